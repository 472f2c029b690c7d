import json
from typing import Optional


def write_audit(
    cur,
    user: dict,
    action: str,
    table_name: str,
    record_id: Optional[int],
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    client: Optional[dict] = None,
):
    client = client or {}
    cur.execute(
        """
        INSERT INTO audit_log
          (user_id, username, action, table_name, record_id, old_values, new_values, ip_address, user_agent)
        VALUES
          (%s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s)
        """,
        (
            user.get("user_id"),
            user.get("username"),
            action,
            table_name,
            record_id,
            json.dumps(old_values, default=str) if old_values is not None else None,
            json.dumps(new_values, default=str) if new_values is not None else None,
            client.get("ip_address"),
            client.get("user_agent"),
        ),
    )
