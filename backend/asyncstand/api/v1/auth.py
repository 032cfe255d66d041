# backend/asyncstand/api/v1/auth.py
from __future__ import annotations

import secrets
import uuid
from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.config import settings
from asyncstand.core.security import bearer_scheme, create_access_token, decode_access_token
from asyncstand.core.timeutil import as_utc, utcnow
from asyncstand.db.session import get_db
from asyncstand.models.user import User
from asyncstand.schemas.auth import MagicCodeRequest, MagicCodeVerify, MeResponse, ProfileUpdateRequest, TokenResponse
from asyncstand.services import audit

router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)

MAGIC_CODE_EXPIRY_MINUTES = 10


def _should_return_magic_code_in_response() -> bool:
    """Never outside development/test; there the code is returned to simplify manual testing."""
    return settings.environment_name in {"development", "dev", "test", "local"}


async def purge_expired_magic_codes(db: AsyncSession) -> None:
    stmt = (
        update(User)
        .where(User.magic_code_expires_at.is_not(None))
        .where(User.magic_code_expires_at < utcnow())
        .values(magic_code=None, magic_code_expires_at=None)
    )
    await db.execute(stmt)


@router.post("/request-code")
async def request_code(payload: MagicCodeRequest, db: AsyncSession = Depends(get_db)):
    """
    Body: {"email": "user@example.com"}
    Generates a 6-digit magic code stored on the user record (created on first login).
    """
    email = User.normalize_email(payload.email)

    await purge_expired_magic_codes(db)

    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if user is None:
        user = User(email=email, is_active=True)
        db.add(user)
        await db.flush()

    code = str(secrets.randbelow(900000) + 100000)
    user.magic_code = code
    user.magic_code_expires_at = utcnow() + timedelta(minutes=MAGIC_CODE_EXPIRY_MINUTES)

    await db.commit()

    resp = {"status": "ok", "expires_in_minutes": MAGIC_CODE_EXPIRY_MINUTES}
    if _should_return_magic_code_in_response():
        resp["code"] = code
    return resp


@router.post("/verify-code", response_model=TokenResponse)
async def verify_code(payload: MagicCodeVerify, db: AsyncSession = Depends(get_db)) -> TokenResponse:
    email = User.normalize_email(payload.email)
    code = payload.code.strip()

    if not code:
        raise HTTPException(status_code=400, detail="code is required")

    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()

    if not user or not user.magic_code or not user.magic_code_expires_at:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid code")

    if not secrets.compare_digest(user.magic_code, code):
        await audit.log_audit(
            db,
            actor_user_id=user.id,
            action="auth.login.failed",
            category=audit.CATEGORY_AUTH,
            severity=audit.SEVERITY_MEDIUM,
            resource_type="user",
            resource_id=user.id,
            tags=["auth"],
        )
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid code")

    if as_utc(user.magic_code_expires_at) < utcnow():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Code expired")

    # One-time use
    user.magic_code = None
    user.magic_code_expires_at = None
    await audit.log_audit(
        db,
        actor_user_id=user.id,
        action="auth.login",
        category=audit.CATEGORY_AUTH,
        resource_type="user",
        resource_id=user.id,
        tags=["auth"],
    )
    await db.commit()
    logger.info("user_logged_in", user_id=str(user.id))

    access_token = create_access_token(
        subject=str(user.id),
        expires_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
    )
    return TokenResponse(access_token=access_token)


async def get_current_user(
    credentials=Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency for protected endpoints.
    """
    user_id = decode_access_token(credentials.credentials)

    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = await db.get(User, user_uuid)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")

    return user


def _to_me_response(user: User) -> MeResponse:
    return MeResponse(
        id=str(user.id),
        email=user.email,
        is_active=user.is_active,
        is_super_admin=user.is_super_admin,
        full_name=user.full_name,
    )


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)) -> MeResponse:
    return _to_me_response(user)


@router.patch("/me", response_model=MeResponse)
async def update_me(
    payload: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> MeResponse:
    data = payload.model_dump(exclude_unset=True)
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields provided to update.")

    if "full_name" in data:
        user.full_name = User.normalize_full_name(data["full_name"])

    await db.commit()
    return _to_me_response(user)
