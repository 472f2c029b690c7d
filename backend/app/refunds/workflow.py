"""
Refund orchestration: validate, write the ledger, reconcile stock.

All three steps share one transaction on one pooled connection. The bill row is
locked first, so two refunds against the same bill run one after the other and
the second is validated against what the first committed.
"""
import hashlib
import json
from typing import Optional

import psycopg
from psycopg import errors as pg_errors

from ..db import Database
from ..errors import IdempotencyConflict, PersistenceError, ValidationError
from ..jsonlog import json_log
from ..money import q_money
from .history import load_refund_history
from .ledger import write_refund
from .stock import reconcile_refund_stock
from .validator import (
    RefundRequest,
    check_refund_request,
    load_bill_items,
    load_refunded_quantities,
    lock_bill,
    validate_refund,
)


def request_fingerprint(request: RefundRequest) -> str:
    body = {
        "refund_type": request.refund_type,
        "refund_reason": request.refund_reason,
        "refund_amount": None if request.refund_amount is None else str(q_money(request.refund_amount)),
        "items": [
            {
                "part_id": int(i.part_id),
                "quantity": int(i.quantity),
                "unit_price": None if i.unit_price is None else str(q_money(i.unit_price)),
            }
            for i in request.items
        ],
    }
    raw = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _bill_summary(cur, bill_id: int) -> dict:
    cur.execute(
        """
        SELECT id, bill_number, customer_name, total_amount, status, refund_amount,
               refund_date, refund_reason, refunded_by
        FROM bills
        WHERE id = %s
        """,
        (bill_id,),
    )
    bill = dict(cur.fetchone())
    bill["remaining_amount"] = q_money(q_money(bill["total_amount"]) - q_money(bill["refund_amount"]))
    return bill


def _find_keyed_refund(cur, bill_id: int, key: str) -> Optional[dict]:
    cur.execute(
        """
        SELECT id, request_hash
        FROM bill_refunds
        WHERE bill_id = %s AND idempotency_key = %s
        """,
        (bill_id, key),
    )
    return cur.fetchone()


def _translate_db_error(exc: psycopg.Error) -> PersistenceError:
    if isinstance(exc, pg_errors.TransactionRollback):
        # serialization failure / deadlock
        return PersistenceError("refund conflicted with a concurrent change; nothing was saved", kind="conflict")
    if isinstance(exc, pg_errors.UniqueViolation):
        return PersistenceError("a refund with this idempotency key is already being recorded", kind="conflict")
    if isinstance(exc, psycopg.IntegrityError):
        return PersistenceError("refund violates a database constraint; nothing was saved", kind="integrity")
    if isinstance(exc, psycopg.OperationalError):
        return PersistenceError("database unavailable; nothing was saved", kind="unavailable")
    return PersistenceError("database error; nothing was saved", kind="integrity")


def process_refund(
    db: Database,
    bill_id: int,
    request: RefundRequest,
    user: dict,
    *,
    client: Optional[dict] = None,
    require_idempotency_key: bool = True,
) -> dict:
    key = request.idempotency_key
    if require_idempotency_key and not key:
        raise ValidationError("an Idempotency-Key header (or idempotency_key field) is required for refunds")
    fingerprint = request_fingerprint(request)

    try:
        with db.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    bill = lock_bill(cur, bill_id)

                    if key:
                        existing = _find_keyed_refund(cur, bill_id, key)
                        if existing:
                            if existing["request_hash"] != fingerprint:
                                raise IdempotencyConflict(
                                    "idempotency key was already used for a different refund request"
                                )
                            refund = next(r for r in load_refund_history(cur, bill_id) if r["id"] == existing["id"])
                            json_log("info", "refund.replayed", bill_id=bill_id, refund_id=refund["id"], user_id=user.get("user_id"))
                            return {"refund": refund, "bill": _bill_summary(cur, bill_id), "stock_movements": [], "replayed": True}

                    plan = check_refund_request(
                        bill,
                        load_bill_items(cur, bill_id),
                        load_refunded_quantities(cur, bill_id),
                        request,
                    )
                    refund, updated_bill = write_refund(
                        cur,
                        plan,
                        user,
                        idempotency_key=key,
                        request_hash=fingerprint,
                        client=client,
                    )
                    movements = reconcile_refund_stock(
                        cur,
                        refund["id"],
                        plan.lines,
                        user.get("user_id"),
                        note=f"Refund for bill {bill.get('bill_number') or bill_id}",
                    )
    except ValidationError as exc:
        json_log("info", "refund.rejected", bill_id=bill_id, user_id=user.get("user_id"), **exc.to_dict())
        raise
    except PersistenceError as exc:
        json_log("error", "refund.failed", bill_id=bill_id, user_id=user.get("user_id"), kind=exc.kind, error=exc.detail)
        raise
    except psycopg.Error as exc:
        err = _translate_db_error(exc)
        json_log("error", "refund.failed", bill_id=bill_id, user_id=user.get("user_id"), kind=err.kind, error=str(exc))
        raise err from exc

    json_log(
        "info",
        "refund.created",
        bill_id=bill_id,
        refund_id=refund["id"],
        refund_type=plan.refund_type,
        amount=plan.amount,
        status=plan.new_status,
        lines=len(plan.lines),
        user_id=user.get("user_id"),
    )
    return {"refund": refund, "bill": updated_bill, "stock_movements": movements, "replayed": False}


def preview_refund(db: Database, bill_id: int, request: RefundRequest) -> dict:
    """Validate a refund without writing anything."""
    try:
        with db.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    plan = validate_refund(cur, bill_id, request)
    except psycopg.Error as exc:
        raise _translate_db_error(exc) from exc
    return {
        "bill_id": plan.bill_id,
        "refund_type": plan.refund_type,
        "refund_amount": plan.amount,
        "status_after": plan.new_status,
        "remaining_amount_after": plan.remaining_after,
        "items": [
            {
                "part_id": l.part_id,
                "part_name": l.part_name,
                "manufacturer": l.manufacturer,
                "quantity": l.quantity,
                "unit_price": l.unit_price,
                "total_price": l.total_price,
            }
            for l in plan.lines
        ],
    }
