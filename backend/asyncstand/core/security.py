from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from asyncstand.core.config import settings

bearer_scheme = HTTPBearer(auto_error=True)

MAGIC_TOKEN_TYPE = "standup_response"


def _normalize_token(token: str) -> str:
    """
    Make token decoding resilient to common Swagger / copy-paste issues:
    - Leading/trailing whitespace/newlines
    - Surrounding quotes
    - Accidentally including the 'Bearer ' prefix in the token field
    """
    if token is None:
        return ""

    t = token.strip()

    if (t.startswith('"') and t.endswith('"')) or (t.startswith("'") and t.endswith("'")):
        t = t[1:-1].strip()

    if t.lower().startswith("bearer "):
        t = t[7:].strip()

    return t


def create_access_token(subject: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expire_dt = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "exp": int(expire_dt.timestamp()),
        "iat": int(now.timestamp()),
    }

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    token = _normalize_token(token)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError:
        # Includes expired signature, bad format, bad signature, wrong algorithm, etc.
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    sub = payload.get("sub")
    if not sub or payload.get("typ") == MAGIC_TOKEN_TYPE:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return str(sub)


# ---------------------------------------------------------
# Magic tokens (standup response links)
# ---------------------------------------------------------
def create_magic_token(claims: dict[str, Any], expires_hours: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expire_dt = now + timedelta(hours=expires_hours or settings.MAGIC_LINK_EXPIRY_HOURS)

    to_encode: dict[str, Any] = dict(claims)
    to_encode.update(
        {
            "typ": MAGIC_TOKEN_TYPE,
            "exp": int(expire_dt.timestamp()),
            "iat": int(now.timestamp()),
        }
    )
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_magic_token(token: str) -> dict[str, Any] | None:
    """Returns the claims, or None when the token is malformed, expired or of the wrong type."""
    token = _normalize_token(token)
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_exp": True},
        )
    except JWTError:
        return None
    if payload.get("typ") != MAGIC_TOKEN_TYPE:
        return None
    return payload
