from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from ..db import Database
from ..deps import get_db, require_role

router = APIRouter(prefix="/audit-logs", tags=["audit"])

_FILTERS = """
    WHERE (%s::text IS NULL OR al.table_name = %s)
      AND (%s::text IS NULL OR al.action = %s)
      AND (%s::text IS NULL OR al.username ILIKE %s)
"""


@router.get("", dependencies=[Depends(require_role("superadmin"))])
def list_audit_logs(
    table_name: Optional[str] = None,
    action: Optional[str] = None,
    username: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Database = Depends(get_db),
):
    if limit <= 0 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    if offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0")
    table_name = (table_name or "").strip() or None
    action = (action or "").strip().upper() or None
    pattern = f"%{username.strip()}%" if username and username.strip() else None
    filters = (table_name, table_name, action, action, pattern, pattern)

    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT al.id, al.user_id, al.username, u.username AS performed_by_username,
                       al.action, al.table_name, al.record_id, al.old_values, al.new_values,
                       al.ip_address, al.user_agent, al.created_at
                FROM audit_log al
                LEFT JOIN users u ON u.id = al.user_id
                {_FILTERS}
                ORDER BY al.created_at DESC, al.id DESC
                LIMIT %s OFFSET %s
                """,
                filters + (limit, offset),
            )
            rows = cur.fetchall()
            cur.execute(
                f"""
                SELECT COUNT(*) AS total
                FROM audit_log al
                {_FILTERS}
                """,
                filters,
            )
            total = cur.fetchone()["total"]
    return {"audit_logs": rows, "total": total, "limit": limit, "offset": offset}
