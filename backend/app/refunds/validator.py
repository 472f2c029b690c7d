"""
Refund request validation.

Everything here is read-only. `validate_refund` loads the bill (row-locked, so
the caller must already be inside the refund transaction), its billed lines and
what has already been refunded, and hands them to `check_refund_request`, which
decides whether the request fits and turns it into a `RefundPlan`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from ..errors import NotFoundError, ValidationError
from ..money import money_equal, q_money, to_decimal


@dataclass
class RefundLineRequest:
    part_id: int
    quantity: int
    unit_price: Optional[Decimal] = None


@dataclass
class RefundRequest:
    refund_type: str
    refund_reason: str
    refund_amount: Optional[Decimal] = None
    items: List[RefundLineRequest] = field(default_factory=list)
    idempotency_key: Optional[str] = None


@dataclass
class BilledPart:
    part_id: int
    part_name: str
    manufacturer: Optional[str]
    quantity: int
    unit_price: Decimal
    refunded_quantity: int = 0

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - self.refunded_quantity


@dataclass
class PlannedLine:
    part_id: int
    part_name: str
    manufacturer: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass
class RefundPlan:
    bill_id: int
    refund_type: str
    refund_reason: str
    amount: Decimal
    lines: List[PlannedLine]
    bill_total: Decimal
    refunded_before: Decimal
    new_status: str
    status_before: str = "active"

    @property
    def refunded_after(self) -> Decimal:
        return q_money(self.refunded_before + self.amount)

    @property
    def remaining_after(self) -> Decimal:
        return q_money(self.bill_total - self.refunded_after)


def derive_status(total_amount, refunded_amount) -> str:
    total = to_decimal(total_amount)
    refunded = to_decimal(refunded_amount)
    if refunded <= 0:
        return "active"
    if q_money(total - refunded) <= 0:
        return "refunded"
    return "partially_refunded"


def summarize_billed_parts(bill_items: List[dict], refunded_qty: Dict[int, int]) -> List[BilledPart]:
    """Fold bill lines into one entry per part, in bill order."""
    by_part: Dict[int, BilledPart] = {}
    totals: Dict[int, Decimal] = {}
    for row in bill_items:
        part_id = int(row["part_id"])
        qty = int(row["quantity"])
        line_total = to_decimal(row.get("total_price"))
        if not line_total and row.get("unit_price") is not None:
            line_total = to_decimal(row["unit_price"]) * qty
        if part_id not in by_part:
            by_part[part_id] = BilledPart(
                part_id=part_id,
                part_name=row.get("part_name") or "",
                manufacturer=row.get("manufacturer"),
                quantity=0,
                unit_price=Decimal("0"),
            )
            totals[part_id] = Decimal("0")
        by_part[part_id].quantity += qty
        totals[part_id] += line_total
    for part_id, bp in by_part.items():
        # Same part billed on several lines: refund at the blended price.
        bp.unit_price = q_money(totals[part_id] / bp.quantity) if bp.quantity else Decimal("0")
        bp.refunded_quantity = int(refunded_qty.get(part_id, 0))
    return list(by_part.values())


def _plan_full(request: RefundRequest, parts: List[BilledPart]) -> List[PlannedLine]:
    if request.items:
        raise ValidationError("a full refund covers every remaining item; refund_items must be empty")
    lines = []
    for bp in parts:
        if bp.remaining_quantity <= 0:
            continue
        lines.append(
            PlannedLine(
                part_id=bp.part_id,
                part_name=bp.part_name,
                manufacturer=bp.manufacturer,
                quantity=bp.remaining_quantity,
                unit_price=bp.unit_price,
                total_price=q_money(bp.unit_price * bp.remaining_quantity),
            )
        )
    return lines


def _spread_amount(lines: List[PlannedLine], amount: Decimal) -> List[PlannedLine]:
    """
    Re-price `lines` so their totals add up to `amount`.

    Needed when earlier amount-only or discounted refunds left the money still
    owed out of step with the billed value of the units still on the bill.
    Shares are proportional to billed value; the last line takes the rounding.
    """
    billed = sum((l.total_price for l in lines), Decimal("0"))
    if not lines or billed == amount:
        return lines
    left = amount
    for idx, line in enumerate(lines):
        if idx == len(lines) - 1:
            share = q_money(left)
        elif billed > 0:
            share = min(q_money(amount * line.total_price / billed), left)
        else:
            share = min(q_money(amount / len(lines)), left)
        left -= share
        line.total_price = share
        line.unit_price = q_money(share / line.quantity)
    return lines


def _plan_partial_items(request: RefundRequest, parts: List[BilledPart]) -> List[PlannedLine]:
    by_part = {bp.part_id: bp for bp in parts}
    seen = set()
    lines = []
    for idx, item in enumerate(request.items):
        where = f"refund_items[{idx}]"
        bp = by_part.get(item.part_id)
        if bp is None:
            raise ValidationError(f"{where}: part {item.part_id} is not on this bill", line=idx, part_id=item.part_id)
        if item.part_id in seen:
            raise ValidationError(f"{where}: part {item.part_id} is listed more than once", line=idx, part_id=item.part_id)
        seen.add(item.part_id)
        if item.quantity <= 0:
            raise ValidationError(f"{where}: quantity must be greater than zero", line=idx, part_id=item.part_id)
        if item.quantity > bp.remaining_quantity:
            raise ValidationError(
                f"{where}: cannot refund {item.quantity} x {bp.part_name}; "
                f"only {bp.remaining_quantity} of {bp.quantity} remain refundable",
                line=idx,
                part_id=item.part_id,
            )
        unit_price = bp.unit_price if item.unit_price is None else q_money(item.unit_price)
        if unit_price < 0:
            raise ValidationError(f"{where}: unit_price must be >= 0", line=idx, part_id=item.part_id)
        if unit_price > bp.unit_price:
            raise ValidationError(
                f"{where}: unit_price {unit_price} exceeds billed price {bp.unit_price}",
                line=idx,
                part_id=item.part_id,
            )
        lines.append(
            PlannedLine(
                part_id=bp.part_id,
                part_name=bp.part_name,
                manufacturer=bp.manufacturer,
                quantity=item.quantity,
                unit_price=unit_price,
                total_price=q_money(unit_price * item.quantity),
            )
        )
    return lines


def check_refund_request(
    bill: dict,
    bill_items: List[dict],
    refunded_qty: Dict[int, int],
    request: RefundRequest,
) -> RefundPlan:
    total = q_money(bill["total_amount"])
    refunded_before = q_money(bill.get("refund_amount"))
    remaining_amount = q_money(total - refunded_before)

    if bill.get("status") == "refunded" or remaining_amount <= 0:
        raise ValidationError("bill is already fully refunded")

    parts = summarize_billed_parts(bill_items, refunded_qty)
    requested = None if request.refund_amount is None else q_money(request.refund_amount)

    if request.refund_type == "full":
        amount = remaining_amount
        lines = _spread_amount(_plan_full(request, parts), amount)
        if requested is not None and not money_equal(requested, amount):
            raise ValidationError(
                f"refund_amount {requested} does not match the remaining refundable amount {amount}"
            )
    elif request.refund_type == "partial":
        if request.items:
            lines = _plan_partial_items(request, parts)
            items_total = q_money(sum((l.total_price for l in lines), Decimal("0")))
            if requested is not None and not money_equal(requested, items_total):
                raise ValidationError(
                    f"refund_amount {requested} does not match the refunded items total {items_total}"
                )
            amount = items_total
        else:
            if requested is None:
                raise ValidationError("refund_amount is required when no refund_items are given")
            lines = []
            amount = requested
    else:
        raise ValidationError(f"unknown refund_type: {request.refund_type}")

    if amount <= 0:
        raise ValidationError("refund amount must be greater than zero")
    if amount > remaining_amount:
        raise ValidationError(
            f"refund amount {amount} exceeds the remaining refundable amount {remaining_amount}"
        )

    return RefundPlan(
        bill_id=int(bill["id"]),
        refund_type=request.refund_type,
        refund_reason=request.refund_reason,
        amount=amount,
        lines=lines,
        bill_total=total,
        refunded_before=refunded_before,
        new_status=derive_status(total, refunded_before + amount),
        status_before=bill.get("status") or derive_status(total, refunded_before),
    )


def lock_bill(cur, bill_id: int) -> dict:
    # Row lock serializes refunds on the same bill: a concurrent request waits
    # here and then sees the committed refund in the queries below.
    cur.execute(
        """
        SELECT id, bill_number, customer_name, total_amount, status, refund_amount
        FROM bills
        WHERE id = %s
        FOR UPDATE
        """,
        (bill_id,),
    )
    bill = cur.fetchone()
    if not bill:
        raise NotFoundError(f"bill {bill_id} not found")
    return bill


def load_bill_items(cur, bill_id: int) -> List[dict]:
    cur.execute(
        """
        SELECT id, part_id, part_name, manufacturer, quantity, unit_price, total_price
        FROM bill_items
        WHERE bill_id = %s
        ORDER BY id
        """,
        (bill_id,),
    )
    return cur.fetchall()


def load_refunded_quantities(cur, bill_id: int) -> Dict[int, int]:
    cur.execute(
        """
        SELECT bri.part_id, COALESCE(SUM(bri.quantity), 0) AS refunded_qty
        FROM bill_refund_items bri
        JOIN bill_refunds br ON br.id = bri.refund_id
        WHERE br.bill_id = %s
        GROUP BY bri.part_id
        """,
        (bill_id,),
    )
    return {int(r["part_id"]): int(r["refunded_qty"]) for r in cur.fetchall()}


def validate_refund(cur, bill_id: int, request: RefundRequest) -> RefundPlan:
    bill = lock_bill(cur, bill_id)
    items = load_bill_items(cur, bill_id)
    refunded = load_refunded_quantities(cur, bill_id)
    return check_refund_request(bill, items, refunded, request)
