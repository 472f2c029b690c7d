from decimal import Decimal
from typing import Dict, List, Optional

from ..money import q_money
from .validator import load_bill_items, load_refunded_quantities, summarize_billed_parts


def load_refund_history(cur, bill_id: int) -> List[dict]:
    """
    Refunds for a bill, oldest first, each with its refunded lines.
    Part name/manufacturer come from the live parts table for display.
    """
    cur.execute(
        """
        SELECT br.id, br.bill_id, br.refund_amount, br.refund_reason, br.refund_type,
               br.refund_date, br.refunded_by, u.username AS refunded_by_name
        FROM bill_refunds br
        LEFT JOIN users u ON u.id = br.refunded_by
        WHERE br.bill_id = %s
        ORDER BY br.refund_date ASC, br.id ASC
        """,
        (bill_id,),
    )
    refunds = [dict(r) for r in cur.fetchall()]
    if not refunds:
        return []

    cur.execute(
        """
        SELECT bri.id, bri.refund_id, bri.part_id, p.name AS part_name, p.manufacturer,
               bri.quantity, bri.unit_price, bri.total_price
        FROM bill_refund_items bri
        JOIN bill_refunds br ON br.id = bri.refund_id
        LEFT JOIN parts p ON p.id = bri.part_id
        WHERE br.bill_id = %s
        ORDER BY bri.refund_id ASC, bri.id ASC
        """,
        (bill_id,),
    )
    items_by_refund: Dict[int, List[dict]] = {}
    for row in cur.fetchall():
        item = dict(row)
        items_by_refund.setdefault(item.pop("refund_id"), []).append(item)

    for refund in refunds:
        refund["items"] = items_by_refund.get(refund["id"], [])
    return refunds


def load_bill_detail(cur, bill_id: int) -> Optional[dict]:
    cur.execute(
        """
        SELECT id, bill_number, customer_name, customer_phone, total_amount, total_quantity,
               status, refund_amount, refund_date, refund_reason, refunded_by, created_by,
               bill_date, created_at, updated_at
        FROM bills
        WHERE id = %s
        """,
        (bill_id,),
    )
    bill = cur.fetchone()
    if not bill:
        return None
    bill = dict(bill)

    items = [dict(r) for r in load_bill_items(cur, bill_id)]
    refunded_qty = load_refunded_quantities(cur, bill_id)
    parts = summarize_billed_parts(items, refunded_qty)
    refunds = load_refund_history(cur, bill_id)

    total_refunded = q_money(sum((Decimal(str(r["refund_amount"])) for r in refunds), Decimal("0")))
    bill["items"] = items
    bill["refundable_items"] = [
        {
            "part_id": bp.part_id,
            "part_name": bp.part_name,
            "manufacturer": bp.manufacturer,
            "quantity": bp.quantity,
            "unit_price": bp.unit_price,
            "refunded_quantity": bp.refunded_quantity,
            "remaining_quantity": bp.remaining_quantity,
        }
        for bp in parts
    ]
    bill["refunds"] = refunds
    bill["total_refunded"] = total_refunded
    bill["remaining_amount"] = q_money(q_money(bill["total_amount"]) - total_refunded)
    return bill


def list_bills(cur, search: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[dict]:
    pattern = f"%{search.strip()}%" if search and search.strip() else None
    cur.execute(
        """
        SELECT b.id, b.bill_number, b.customer_name, b.customer_phone, b.total_amount,
               b.total_quantity, b.status, b.refund_amount, b.bill_date, b.created_at,
               COUNT(br.id) AS refund_count
        FROM bills b
        LEFT JOIN bill_refunds br ON br.bill_id = b.id
        WHERE (%s::text IS NULL
               OR b.bill_number ILIKE %s
               OR b.customer_name ILIKE %s
               OR b.customer_phone ILIKE %s)
        GROUP BY b.id
        ORDER BY b.created_at DESC, b.id DESC
        LIMIT %s OFFSET %s
        """,
        (pattern, pattern, pattern, pattern, limit, offset),
    )
    out = []
    for row in cur.fetchall():
        bill = dict(row)
        bill["remaining_amount"] = q_money(q_money(bill["total_amount"]) - q_money(bill["refund_amount"]))
        out.append(bill)
    return out
