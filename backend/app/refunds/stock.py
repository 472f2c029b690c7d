from typing import List, Optional

from ..errors import PersistenceError
from ..stock_moves import lock_part, move_stock
from .validator import PlannedLine


def reconcile_refund_stock(
    cur,
    refund_id: int,
    lines: List[PlannedLine],
    user_id: Optional[int],
    note: Optional[str] = None,
) -> List[dict]:
    """Put refunded units back on the shelf, one stock movement per line."""
    movements = []
    # Lock parts in id order so two refunds touching the same parts can't deadlock.
    for line in sorted(lines, key=lambda l: l.part_id):
        part = lock_part(cur, line.part_id)
        if not part:
            raise PersistenceError(f"part {line.part_id} no longer exists", kind="integrity")
        if int(part["sold_stock"]) < line.quantity:
            raise PersistenceError(
                f"sold stock for part {line.part_id} is {part['sold_stock']}, cannot return {line.quantity}",
                kind="integrity",
            )
        movements.append(
            move_stock(
                cur,
                part,
                line.quantity,
                movement_type="return",
                reference_type="refund",
                reference_id=refund_id,
                notes=note,
                user_id=user_id,
            )
        )
    return movements
