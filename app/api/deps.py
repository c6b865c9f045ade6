# app/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header, HTTPException
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rbac import CurrentUser, UserRole
from app.db.session import SessionLocal
from app.services.mpesa import DarajaClient


# =========================================================
# DB (per request)
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_user(authorization: Optional[str] = Header(None)) -> CurrentUser:
    """
    Token claims: sub (user id), role, name (optional).
    Tokens are issued by the clinic's auth service.
    """
    raw = _extract_bearer(authorization)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing token")

    payload = _decode_token(raw)
    try:
        user_id = int(payload.get("sub"))
        role = UserRole(str(payload.get("role") or "").upper())
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return CurrentUser(id=user_id, role=role, name=payload.get("name") or "")


# =========================================================
# M-Pesa
# =========================================================
def get_mpesa_client() -> DarajaClient:
    return DarajaClient.from_settings()
