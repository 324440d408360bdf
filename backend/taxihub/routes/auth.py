"""Authentication routes: registration, sign-in, sign-out, current session."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import (
    SessionContext,
    create_access_token,
    get_session_context,
    hash_password,
    verify_password,
    write_activity_log,
)
from taxihub.services.session_resolver import Rejected, resolve_session, sign_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=200)
    password: str = Field(min_length=6)
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=1, max_length=30)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    profile: dict


def profile_to_dict(profile) -> dict:
    """Public view of a marshal profile (used by auth and admin routes)."""
    return {
        "id": str(profile.id),
        "email": profile.email,
        "name": profile.name,
        "phone": profile.phone,
        "role": profile.role,
        "rank_id": str(profile.rank_id) if profile.rank_id else None,
        "rank_name": profile.rank_name,
        "approved": profile.approved,
        "suspended": profile.suspended,
        "approved_at": profile.approved_at.isoformat() if profile.approved_at else None,
        "approved_by": profile.approved_by,
        "suspended_at": profile.suspended_at.isoformat() if profile.suspended_at else None,
        "last_login": profile.last_login.isoformat() if profile.last_login else None,
        "login_count": profile.login_count,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Create a principal and its unapproved profile.

    No session is issued: the account stays pending until an Admin approves
    it.
    """
    from taxihub.models import MarshalProfile, Principal

    email = body.email.strip().lower()
    existing = await db.execute(select(Principal).where(Principal.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This email is already registered. Please login instead.",
        )

    principal = Principal(email=email, password_hash=hash_password(body.password))
    db.add(principal)
    await db.flush()

    profile = MarshalProfile(
        id=principal.id,
        email=email,
        name=body.name.strip(),
        phone=body.phone.strip(),
        role=None,
        rank_id=None,
        approved=False,
        suspended=False,
    )
    db.add(profile)
    await db.flush()

    await write_activity_log(
        db,
        None,
        "registration",
        target_type="marshal",
        target_id=str(profile.id),
        details={"email": email, "name": profile.name},
        ip_address=_client_ip(request),
        actor_email=email,
    )
    await commit_or_fail(db, "register account")

    logger.info(f"New registration pending approval: {email}")
    return {
        "id": str(profile.id),
        "email": email,
        "approved": False,
        "message": "Registration successful. Your account is pending approval by an administrator.",
    }


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    from taxihub.models import Principal

    email = body.email.strip().lower()
    result = await db.execute(select(Principal).where(Principal.email == email))
    principal = result.scalar_one_or_none()

    if not principal or not verify_password(body.password, principal.password_hash):
        await write_activity_log(
            db,
            None,
            "login_failed",
            target_type="auth",
            details={"reason": "invalid_credentials"},
            ip_address=_client_ip(request),
            actor_email=email,
            success=False,
        )
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password. Please try again.",
        )

    outcome = await resolve_session(db, principal, on_login=True)
    if isinstance(outcome, Rejected):
        logger.info(f"Sign-in rejected for {email}: {outcome.reason.value}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=outcome.message)

    profile = outcome.profile
    await db.refresh(profile)
    token = create_access_token(principal, role=profile.role)

    ctx = SessionContext(profile=profile, ip_address=_client_ip(request))
    await write_activity_log(
        db,
        ctx,
        "login",
        target_type="marshal",
        target_id=str(profile.id),
        details={"role": profile.role},
    )
    await db.commit()

    return TokenResponse(
        access_token=token,
        profile={
            **profile_to_dict(profile),
            "permissions": ctx.permissions,
            "scope": ctx.scope,
        },
    )


@router.post("/logout")
async def logout(
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    """Invalidate every token issued to the caller."""
    await write_activity_log(db, ctx, "logout", target_type="marshal", target_id=str(ctx.profile_id))
    await sign_out(db, ctx.profile_id)
    return {"message": "Signed out"}


@router.get("/me")
async def get_me(ctx: SessionContext = Depends(get_session_context)):
    return {
        **profile_to_dict(ctx.profile),
        "permissions": ctx.permissions,
        "scope": ctx.scope,
    }
