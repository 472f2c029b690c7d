from decimal import Decimal

import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import IdempotencyKey, Money, NonEmptyText, Quantity, RefundType


class _M(BaseModel):
    refund_type: RefundType


class _Line(BaseModel):
    quantity: Quantity
    price: Money
    reason: NonEmptyText


class _Key(BaseModel):
    key: IdempotencyKey


def test_refund_type_normalizes_case():
    assert _M(refund_type=" Partial ").refund_type == "partial"
    assert _M(refund_type="FULL").refund_type == "full"


def test_unknown_refund_type_is_rejected():
    with pytest.raises(ValidationError):
        _M(refund_type="store_credit")


def test_money_and_quantity_bounds():
    line = _Line(quantity=2, price="19.99", reason="  damaged  ")
    assert line.price == Decimal("19.99")
    assert line.reason == "damaged"
    for bad in ({"quantity": 0}, {"price": "-1"}, {"price": "1.005"}, {"reason": "   "}):
        with pytest.raises(ValidationError):
            _Line(**{"quantity": 1, "price": "1", "reason": "x", **bad})


def test_idempotency_key_shape():
    assert _Key(key=" 3f2b9c1e-retry ").key == "3f2b9c1e-retry"
    for bad in ("short", "has space inside", "-leading-dash", "x" * 129):
        with pytest.raises(ValidationError):
            _Key(key=bad)
