from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from typing import Optional
from ..audit import write_audit
from ..db import Database
from ..deps import client_info, get_db, require_role
from ..security import REFUND_ROLES
from ..validation import Money, NonEmptyText

router = APIRouter(prefix="/parts", tags=["parts"])


class PartIn(BaseModel):
    name: NonEmptyText
    manufacturer: Optional[str] = None
    part_number: Optional[str] = None
    price: Money
    available_stock: int = Field(default=0, ge=0)


@router.get("")
def list_parts(search: Optional[str] = None, db: Database = Depends(get_db)):
    pattern = f"%{search.strip()}%" if search and search.strip() else None
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, manufacturer, part_number, price,
                       available_stock, sold_stock, reserved_stock, created_at, updated_at
                FROM parts
                WHERE (%s::text IS NULL OR name ILIKE %s OR manufacturer ILIKE %s OR part_number ILIKE %s)
                ORDER BY name ASC, id ASC
                """,
                (pattern, pattern, pattern, pattern),
            )
            return {"parts": cur.fetchall()}


@router.post("", status_code=201)
def create_part(
    data: PartIn,
    request: Request,
    user=Depends(require_role(*REFUND_ROLES)),
    db: Database = Depends(get_db),
):
    with db.connection() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO parts (name, manufacturer, part_number, price, available_stock, created_by)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id, name, manufacturer, part_number, price,
                              available_stock, sold_stock, reserved_stock, created_at, updated_at
                    """,
                    (
                        data.name,
                        (data.manufacturer or "").strip() or None,
                        (data.part_number or "").strip() or None,
                        data.price,
                        data.available_stock,
                        user["user_id"],
                    ),
                )
                part = cur.fetchone()
                if data.available_stock:
                    cur.execute(
                        """
                        INSERT INTO stock_movements
                          (part_id, movement_type, quantity, previous_available, new_available,
                           reference_type, reference_id, notes, created_by)
                        VALUES
                          (%s, 'restock', %s, 0, %s, 'part', %s, 'Initial stock', %s)
                        """,
                        (part["id"], data.available_stock, data.available_stock, part["id"], user["user_id"]),
                    )
                write_audit(cur, user, "CREATE", "parts", part["id"], new_values=dict(part), client=client_info(request))
                return {"part": part}


@router.get("/{part_id}/stock-movements")
def list_stock_movements(part_id: int, limit: int = 200, db: Database = Depends(get_db)):
    if limit <= 0 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM parts WHERE id = %s", (part_id,))
            if not cur.fetchone():
                raise HTTPException(status_code=404, detail="part not found")
            cur.execute(
                """
                SELECT id, part_id, movement_type, quantity, previous_available, new_available,
                       reference_type, reference_id, notes, created_by, created_at
                FROM stock_movements
                WHERE part_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (part_id, limit),
            )
            return {"movements": cur.fetchall()}
