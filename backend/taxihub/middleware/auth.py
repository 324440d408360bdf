"""Authentication and authorization middleware for TaxiHub.

Provides:
- Password hashing (bcrypt)
- JWT creation / validation
- ``SessionContext`` and the ``get_session_context()`` dependency
- ``require_permission()`` (the action gate as a FastAPI dependency)
- Activity-log helper
"""
from __future__ import annotations

import dataclasses
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.config import settings
from taxihub.database import get_db
from taxihub.rbac import Action, coerce_role, has_permission, is_global_scope, permissions_for
from taxihub.scoping import apply_rank_scope, build_scoped_query

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    """Compare a plain-text password against a bcrypt hash."""
    return _pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Return the bcrypt hash of a plain-text password."""
    return _pwd_context.hash(plain)


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(principal: Any, role: str | None = None) -> str:
    """Create a signed JWT for a principal.

    The token carries *sub* (principal id), *email*, *sv* (the principal's
    session version at issue time), *role* and *exp*.
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    payload = {
        "sub": str(principal.id),
        "email": principal.email,
        "sv": principal.session_version,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


# ---------------------------------------------------------------------------
# OAuth2 scheme (tells Swagger UI where the login endpoint is)
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ---------------------------------------------------------------------------
# Session context
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class SessionContext:
    """Everything a handler needs to know about the caller: the bound
    profile, its permission check and its scoped-query builder."""

    profile: Any
    ip_address: str | None = None

    @property
    def profile_id(self) -> uuid.UUID:
        return self.profile.id

    @property
    def email(self) -> str:
        return self.profile.email

    @property
    def role(self):
        return coerce_role(self.profile.role)

    @property
    def rank_id(self) -> uuid.UUID | None:
        return self.profile.rank_id

    @property
    def is_global(self) -> bool:
        return is_global_scope(self.profile.role)

    @property
    def scope(self) -> str:
        return "global" if self.is_global else "rank"

    @property
    def permissions(self) -> list[str]:
        return sorted(a.value for a in permissions_for(self.profile.role))

    def has_permission(self, action: Action | str) -> bool:
        return has_permission(self.profile, action)

    def scoped_query(self, collection_name: str) -> Select:
        return build_scoped_query(collection_name, self.profile)

    def apply_scope(self, stmt: Select, collection_name: str) -> Select:
        return apply_rank_scope(stmt, collection_name, self.profile)


# ---------------------------------------------------------------------------
# Current-session dependency
# ---------------------------------------------------------------------------


async def get_session_context(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> SessionContext:
    """Decode the JWT, load the principal and resolve it into a session.

    Raises ``HTTPException(401)`` when the token is invalid, the principal is
    gone or the token predates a sign-out; ``HTTPException(403)`` when the
    session resolver rejects the principal (pending approval, suspended...).
    """
    from taxihub.models import Principal
    from taxihub.services.session_resolver import Rejected, resolve_session

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        subject: str | None = payload.get("sub")
        if subject is None:
            raise credentials_exception
        principal_id = uuid.UUID(subject)
    except (JWTError, ValueError):
        raise credentials_exception

    result = await db.execute(select(Principal).where(Principal.id == principal_id))
    principal: Principal | None = result.scalar_one_or_none()

    if principal is None:
        raise credentials_exception

    if payload.get("sv") != principal.session_version:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Your session has ended. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    outcome = await resolve_session(db, principal)
    if isinstance(outcome, Rejected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=outcome.message,
        )

    ctx = SessionContext(
        profile=outcome.profile,
        ip_address=request.client.host if request.client else None,
    )
    request.state.session_context = ctx
    return ctx


# ---------------------------------------------------------------------------
# Permission-checking dependency factory
# ---------------------------------------------------------------------------


def require_permission(*actions: Action):
    """Return a FastAPI dependency that ensures the caller's role grants
    ALL of the specified actions.

    Usage::

        @router.post("", status_code=201)
        async def record_load(
            body: LoadCreate,
            db: AsyncSession = Depends(get_db),
            ctx: SessionContext = Depends(require_permission(Action.RECORD_LOADS)),
        ):
            ...
    """
    required = tuple(actions)

    async def _check_permission(
        ctx: SessionContext = Depends(get_session_context),
    ) -> SessionContext:
        missing = [a.value for a in required if not ctx.has_permission(a)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}.",
            )
        return ctx

    return _check_permission


# ---------------------------------------------------------------------------
# Activity-log helper
# ---------------------------------------------------------------------------


async def write_activity_log(
    db: AsyncSession,
    ctx: SessionContext | None,
    action: str,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
    actor_email: str | None = None,
    success: bool = True,
) -> None:
    """Stage an activity-log entry on ``db``; the caller's commit persists
    it together with the action it describes."""
    from taxihub.models import ActivityLog

    entry = ActivityLog(
        actor_id=ctx.profile_id if ctx else None,
        actor_email=ctx.email if ctx else actor_email,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details,
        ip_address=ip_address or (ctx.ip_address if ctx else None),
        success=success,
    )
    db.add(entry)
    await db.flush()
