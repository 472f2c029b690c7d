#!/usr/bin/env python3
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.security import ROLES, hash_password


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _generate_password() -> str:
    # URL-safe and copy/paste friendly.
    return secrets.token_urlsafe(16)


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2

    username = os.getenv("BOOTSTRAP_ADMIN_USERNAME", "admin").strip()
    if not username:
        print("bootstrap_admin: BOOTSTRAP_ADMIN_USERNAME is empty", file=sys.stderr)
        return 2

    role = os.getenv("BOOTSTRAP_ADMIN_ROLE", "superadmin").strip().lower()
    if role not in ROLES:
        print(f"bootstrap_admin: unknown role {role!r}", file=sys.stderr)
        return 2

    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
    generated_password = False
    if not password:
        password = _generate_password()
        generated_password = True

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM users WHERE username = %s", (username,))
                if cur.fetchone():
                    # Idempotent: don't create duplicate users.
                    return 0
                cur.execute(
                    """
                    INSERT INTO users (username, hashed_password, role, is_active)
                    VALUES (%s, %s, %s, true)
                    """,
                    (username, hash_password(password), role),
                )

    if generated_password:
        print(f"bootstrap_admin: created {username} ({role}) with password: {password}", file=sys.stderr)
    else:
        print(f"bootstrap_admin: created {username} ({role})", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
