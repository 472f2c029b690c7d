from typing import Optional

from ..audit import write_audit
from .validator import RefundPlan


def write_refund(
    cur,
    plan: RefundPlan,
    user: dict,
    idempotency_key: Optional[str] = None,
    request_hash: Optional[str] = None,
    client: Optional[dict] = None,
) -> tuple[dict, dict]:
    """
    Record one refund against `plan.bill_id` and move the bill to its new status.

    Runs on the caller's cursor; the caller owns the transaction, so a failure in
    any later step (stock reconciliation) rolls these rows back too.
    """
    cur.execute(
        """
        INSERT INTO bill_refunds
          (bill_id, refund_amount, refund_reason, refund_type, refunded_by, idempotency_key, request_hash)
        VALUES
          (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id, bill_id, refund_amount, refund_reason, refund_type, refund_date, refunded_by, idempotency_key
        """,
        (
            plan.bill_id,
            plan.amount,
            plan.refund_reason,
            plan.refund_type,
            user.get("user_id"),
            idempotency_key,
            request_hash,
        ),
    )
    refund = dict(cur.fetchone())

    items = []
    for line in plan.lines:
        cur.execute(
            """
            INSERT INTO bill_refund_items (refund_id, part_id, quantity, unit_price, total_price)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id
            """,
            (refund["id"], line.part_id, line.quantity, line.unit_price, line.total_price),
        )
        items.append(
            {
                "id": cur.fetchone()["id"],
                "part_id": line.part_id,
                "part_name": line.part_name,
                "manufacturer": line.manufacturer,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "total_price": line.total_price,
            }
        )
    refund["items"] = items

    cur.execute(
        """
        UPDATE bills
        SET refund_amount = %s,
            status = %s,
            refund_date = CURRENT_DATE,
            refund_reason = %s,
            refunded_by = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING id, bill_number, customer_name, total_amount, status, refund_amount,
                  refund_date, refund_reason, refunded_by
        """,
        (plan.refunded_after, plan.new_status, plan.refund_reason, user.get("user_id"), plan.bill_id),
    )
    bill = dict(cur.fetchone())
    bill["remaining_amount"] = plan.remaining_after

    write_audit(
        cur,
        user,
        "REFUND",
        "bills",
        plan.bill_id,
        old_values={"refund_amount": plan.refunded_before, "status": plan.status_before},
        new_values={
            "refund_id": refund["id"],
            "refund_type": plan.refund_type,
            "refund_amount": plan.amount,
            "status": plan.new_status,
            "items": [{"part_id": i["part_id"], "quantity": i["quantity"]} for i in items],
        },
        client=client,
    )
    return refund, bill
