from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


# Canonical codes mirror the CHECK constraints in `backend/db/migrations/001_init.sql`.
RefundType = Annotated[Literal["full", "partial"], BeforeValidator(_to_lower_str)]

Quantity = Annotated[int, Field(gt=0)]
Money = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]

# Client-supplied retry key for refund creation.
IdempotencyKey = Annotated[
    str,
    BeforeValidator(_strip_str),
    StringConstraints(min_length=8, max_length=128, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$"),
]

NonEmptyText = Annotated[str, BeforeValidator(_strip_str), StringConstraints(min_length=1, max_length=500)]
