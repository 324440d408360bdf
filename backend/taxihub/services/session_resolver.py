"""Session resolution: authenticated principal → usable marshal profile.

A principal with valid credentials is only let in when its profile exists,
has been approved by an admin and is not suspended.  Pending and suspended
principals are signed out (their ``session_version`` is bumped) so any token
they still hold stops working.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import AsyncSessionLocal
from taxihub.models import MarshalProfile, Principal
from taxihub.models.base import utcnow

logger = logging.getLogger(__name__)


class RejectionReason(str, enum.Enum):
    NO_PROFILE = "no-profile"
    PENDING_APPROVAL = "pending-approval"
    SUSPENDED = "suspended"
    PROFILE_UNAVAILABLE = "profile-unavailable"


REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.NO_PROFILE: "No marshal profile exists for this account. Please register first.",
    RejectionReason.PENDING_APPROVAL: "Your account is pending approval by an administrator.",
    RejectionReason.SUSPENDED: "Your account has been suspended. Please contact an administrator.",
    RejectionReason.PROFILE_UNAVAILABLE: "Your profile could not be loaded right now. Please try again.",
}


@dataclasses.dataclass(frozen=True)
class Bound:
    profile: MarshalProfile


@dataclasses.dataclass(frozen=True)
class Rejected:
    reason: RejectionReason

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self.reason]


SessionResult = Bound | Rejected


async def sign_out(db: AsyncSession, principal_id: uuid.UUID) -> None:
    """Invalidate every token issued to the principal."""
    await db.execute(
        update(Principal)
        .where(Principal.id == principal_id)
        .values(session_version=Principal.session_version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def record_login(profile_id: uuid.UUID, session_factory: Any = AsyncSessionLocal) -> None:
    """Stamp ``last_login`` and bump ``login_count``.

    Runs on its own session so a failure here never disturbs the caller's
    unit of work; failures are logged and swallowed.
    """
    try:
        async with session_factory() as session:
            await session.execute(
                update(MarshalProfile)
                .where(MarshalProfile.id == profile_id)
                .values(
                    last_login=utcnow(),
                    login_count=MarshalProfile.login_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
    except SQLAlchemyError:
        logger.warning("Login bookkeeping failed for profile %s", profile_id, exc_info=True)


async def resolve_session(
    db: AsyncSession,
    principal: Principal,
    *,
    on_login: bool = False,
) -> SessionResult:
    """Resolve ``principal`` into ``Bound(profile)`` or ``Rejected(reason)``.

    ``on_login`` marks an interactive sign-in, which also records the login
    on the profile.
    """
    try:
        result = await db.execute(
            select(MarshalProfile).where(MarshalProfile.id == principal.id)
        )
        profile = result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Profile lookup failed for principal %s", principal.id)
        return Rejected(RejectionReason.PROFILE_UNAVAILABLE)

    if profile is None:
        return Rejected(RejectionReason.NO_PROFILE)

    if not profile.approved:
        await sign_out(db, principal.id)
        return Rejected(RejectionReason.PENDING_APPROVAL)

    if profile.suspended:
        await sign_out(db, principal.id)
        return Rejected(RejectionReason.SUSPENDED)

    if on_login:
        await record_login(profile.id)

    return Bound(profile)
