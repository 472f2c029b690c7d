from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from typing import List, Optional
from ..config import Settings
from ..db import Database
from ..deps import client_info, get_db, get_settings, require_role
from ..refunds.history import list_bills, load_bill_detail, load_refund_history
from ..refunds.validator import RefundLineRequest, RefundRequest
from ..refunds.workflow import preview_refund, process_refund
from ..security import REFUND_ROLES
from ..validation import IdempotencyKey, Money, NonEmptyText, Quantity, RefundType

router = APIRouter(prefix="/bills", tags=["bills"])

_idempotency_key = TypeAdapter(IdempotencyKey)


class RefundItemIn(BaseModel):
    part_id: int
    quantity: Quantity
    unit_price: Optional[Money] = None
    # Older admin builds send the refunded price separately from the billed one.
    refund_unit_price: Optional[Money] = None


class RefundIn(BaseModel):
    refund_type: RefundType = "partial"
    refund_amount: Optional[Money] = None
    refund_reason: NonEmptyText
    refund_items: List[RefundItemIn] = []
    idempotency_key: Optional[IdempotencyKey] = None


def _resolve_idempotency_key(body_key: Optional[str], header_key: Optional[str]) -> Optional[str]:
    if header_key is not None and header_key.strip():
        try:
            header_key = _idempotency_key.validate_python(header_key)
        except PydanticValidationError:
            raise HTTPException(status_code=400, detail="invalid Idempotency-Key header")
    else:
        header_key = None
    if header_key and body_key and header_key != body_key:
        raise HTTPException(status_code=400, detail="Idempotency-Key header and idempotency_key field disagree")
    return header_key or body_key


def _to_refund_request(data: RefundIn, header_key: Optional[str] = None) -> RefundRequest:
    return RefundRequest(
        refund_type=data.refund_type,
        refund_reason=data.refund_reason,
        refund_amount=data.refund_amount,
        items=[
            RefundLineRequest(
                part_id=i.part_id,
                quantity=i.quantity,
                unit_price=i.refund_unit_price if i.refund_unit_price is not None else i.unit_price,
            )
            for i in data.refund_items
        ],
        idempotency_key=_resolve_idempotency_key(data.idempotency_key, header_key),
    )


@router.get("")
def get_bills(
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Database = Depends(get_db),
):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")
    with db.connection() as conn:
        with conn.cursor() as cur:
            return {"bills": list_bills(cur, search=search, limit=limit, offset=offset)}


@router.get("/{bill_id}")
def get_bill(bill_id: int, db: Database = Depends(get_db)):
    with db.connection() as conn:
        with conn.cursor() as cur:
            bill = load_bill_detail(cur, bill_id)
            if not bill:
                raise HTTPException(status_code=404, detail="bill not found")
            return {"bill": bill}


@router.get("/{bill_id}/refunds")
def get_bill_refunds(bill_id: int, db: Database = Depends(get_db)):
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM bills WHERE id = %s", (bill_id,))
            if not cur.fetchone():
                raise HTTPException(status_code=404, detail="bill not found")
            return {"refunds": load_refund_history(cur, bill_id)}


@router.post("/{bill_id}/refund/preview", dependencies=[Depends(require_role(*REFUND_ROLES))])
def preview_bill_refund(bill_id: int, data: RefundIn, db: Database = Depends(get_db)):
    return preview_refund(db, bill_id, _to_refund_request(data))


@router.post("/{bill_id}/refund")
def refund_bill(
    bill_id: int,
    data: RefundIn,
    request: Request,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    user=Depends(require_role(*REFUND_ROLES)),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return process_refund(
        db,
        bill_id,
        _to_refund_request(data, idempotency_key),
        user,
        client=client_info(request),
        require_idempotency_key=settings.refund_require_idempotency_key,
    )
