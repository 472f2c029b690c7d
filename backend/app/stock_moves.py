from typing import Optional


def lock_part(cur, part_id: int) -> Optional[dict]:
    cur.execute(
        """
        SELECT id, name, manufacturer, price, available_stock, sold_stock
        FROM parts
        WHERE id = %s
        FOR UPDATE
        """,
        (part_id,),
    )
    return cur.fetchone()


def move_stock(
    cur,
    part: dict,
    available_delta: int,
    movement_type: str,
    reference_type: str,
    reference_id: int,
    notes: Optional[str],
    user_id: Optional[int],
) -> dict:
    """
    Shift `available_delta` units between the sold and available counters of a
    part locked with `lock_part`, and append the matching stock movement.

    A positive delta moves units back into available stock (returns); a
    negative delta moves them out to sold (sales). Callers check bounds first.
    """
    previous_available = int(part["available_stock"])
    new_available = previous_available + available_delta
    new_sold = int(part["sold_stock"]) - available_delta
    cur.execute(
        """
        UPDATE parts
        SET available_stock = %s, sold_stock = %s, updated_at = now()
        WHERE id = %s
        """,
        (new_available, new_sold, part["id"]),
    )
    cur.execute(
        """
        INSERT INTO stock_movements
          (part_id, movement_type, quantity, previous_available, new_available,
           reference_type, reference_id, notes, created_by)
        VALUES
          (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            part["id"],
            movement_type,
            available_delta,
            previous_available,
            new_available,
            reference_type,
            reference_id,
            notes,
            user_id,
        ),
    )
    movement_id = cur.fetchone()["id"]
    part["available_stock"] = new_available
    part["sold_stock"] = new_sold
    return {
        "id": movement_id,
        "part_id": part["id"],
        "movement_type": movement_type,
        "quantity": available_delta,
        "previous_available": previous_available,
        "new_available": new_available,
        "new_sold": new_sold,
    }
