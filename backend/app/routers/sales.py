from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from ..audit import write_audit
from ..db import Database
from ..deps import client_info, get_current_user, get_db
from ..errors import ValidationError
from ..jsonlog import json_log
from ..money import q_money
from ..refunds.history import load_bill_detail
from ..stock_moves import lock_part, move_stock
from ..validation import Money, NonEmptyText, Quantity

router = APIRouter(prefix="/sales", tags=["sales"])


class SaleLineIn(BaseModel):
    part_id: int
    quantity: Quantity
    unit_price: Money


class SaleIn(BaseModel):
    customer_name: NonEmptyText
    customer_phone: Optional[str] = None
    bill_number: Optional[str] = None
    items: List[SaleLineIn]


def _check_lines(items: List[SaleLineIn]) -> List[SaleLineIn]:
    if not items:
        raise ValidationError("at least one item is required")
    seen = {}
    for idx, item in enumerate(items):
        if item.part_id in seen:
            raise ValidationError(f"items[{idx}]: part {item.part_id} is listed more than once", line=idx, part_id=item.part_id)
        seen[item.part_id] = idx
    return items


@router.post("/sell", status_code=201)
def sell(data: SaleIn, request: Request, user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = _check_lines(data.items)
    total_amount = q_money(sum((Decimal(i.quantity) * i.unit_price for i in items), Decimal("0")))
    total_quantity = sum(i.quantity for i in items)

    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                # Lock in id order; refunds lock parts the same way.
                locked = {}
                for part_id in sorted({i.part_id for i in items}):
                    part = lock_part(cur, part_id)
                    if part:
                        locked[part_id] = part
                for idx, item in enumerate(items):
                    part = locked.get(item.part_id)
                    if not part:
                        raise ValidationError(f"items[{idx}]: part {item.part_id} not found", line=idx, part_id=item.part_id)
                    if int(part["available_stock"]) < item.quantity:
                        raise ValidationError(
                            f"items[{idx}]: insufficient stock for {part['name']}. "
                            f"Available: {part['available_stock']}, Requested: {item.quantity}",
                            line=idx,
                            part_id=item.part_id,
                        )

                cur.execute(
                    """
                    INSERT INTO bills
                      (bill_number, customer_name, customer_phone, total_amount, total_quantity, status, created_by)
                    VALUES
                      (%s, %s, %s, %s, %s, 'active', %s)
                    RETURNING id
                    """,
                    (
                        (data.bill_number or "").strip() or None,
                        data.customer_name,
                        (data.customer_phone or "").strip() or None,
                        total_amount,
                        total_quantity,
                        user["user_id"],
                    ),
                )
                bill_id = cur.fetchone()["id"]

                for item in items:
                    part = locked[item.part_id]
                    cur.execute(
                        """
                        INSERT INTO bill_items
                          (bill_id, part_id, part_name, manufacturer, quantity, unit_price, total_price)
                        VALUES
                          (%s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            bill_id,
                            part["id"],
                            part["name"],
                            part.get("manufacturer"),
                            item.quantity,
                            q_money(item.unit_price),
                            q_money(item.unit_price * item.quantity),
                        ),
                    )
                    move_stock(
                        cur,
                        part,
                        -item.quantity,
                        movement_type="sale",
                        reference_type="bill",
                        reference_id=bill_id,
                        notes=f"Sale to {data.customer_name}",
                        user_id=user["user_id"],
                    )

                bill = load_bill_detail(cur, bill_id)
                write_audit(
                    cur,
                    user,
                    "CREATE",
                    "bills",
                    bill_id,
                    new_values={"total_amount": total_amount, "total_quantity": total_quantity, "items": len(items)},
                    client=client_info(request),
                )

    json_log("info", "bill.created", bill_id=bill_id, total_amount=total_amount, lines=len(items), user_id=user["user_id"])
    return {"bill": bill}
