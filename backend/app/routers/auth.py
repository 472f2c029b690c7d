from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime, timedelta, timezone
from ..config import Settings
from ..db import Database
from ..deps import get_current_user, get_db, get_session, get_settings, SESSION_COOKIE_NAME
from ..jsonlog import json_log
from ..security import hash_password, verify_password, needs_rehash, hash_session_token, new_session_token

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    username: str
    password: str


@router.post("/login")
def login(data: LoginIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    username = (data.username or "").strip()
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, username, hashed_password, role, is_active
                FROM users
                WHERE username = %s
                """,
                (username,),
            )
            user = cur.fetchone()
            if not user or not user["is_active"]:
                json_log("info", "auth.login_failed", username=username)
                raise HTTPException(status_code=401, detail="invalid credentials")
            if not verify_password(data.password, user["hashed_password"]):
                json_log("info", "auth.login_failed", username=username)
                raise HTTPException(status_code=401, detail="invalid credentials")

            if needs_rehash(user["hashed_password"]):
                cur.execute(
                    """
                    UPDATE users
                    SET hashed_password = %s
                    WHERE id = %s
                    """,
                    (hash_password(data.password), user["id"]),
                )

            # Use a strong random token and store only a one-way hash in the DB.
            token = new_session_token()
            expires = datetime.now(timezone.utc) + timedelta(days=settings.session_days)
            cur.execute(
                """
                INSERT INTO auth_sessions (user_id, token, expires_at)
                VALUES (%s, %s, %s)
                """,
                (user["id"], hash_session_token(token), expires),
            )

    resp = JSONResponse(
        {
            "token": token,
            "user": {"id": user["id"], "username": user["username"], "role": user["role"]},
            "expires_at": expires.isoformat(),
        }
    )
    resp.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=not settings.is_dev,
        max_age=settings.session_days * 24 * 60 * 60,
        path="/",
    )
    return resp


@router.post("/logout")
def logout(session=Depends(get_session), db: Database = Depends(get_db)):
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE auth_sessions SET is_active = false WHERE id = %s",
                (session["session_id"],),
            )
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return resp


@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"user": user}
