"""Startup bootstrap: make sure the system has an Admin to approve everyone else."""
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.config import settings
from taxihub.middleware.auth import hash_password
from taxihub.models import MarshalProfile, Principal
from taxihub.models.base import utcnow
from taxihub.rbac import Role

logger = logging.getLogger(__name__)


async def ensure_bootstrap_admin(db: AsyncSession) -> MarshalProfile | None:
    """Create the configured bootstrap Admin when no usable Admin exists.

    A usable Admin is approved and not suspended.

    Does nothing unless both ``BOOTSTRAP_ADMIN_EMAIL`` and
    ``BOOTSTRAP_ADMIN_PASSWORD`` are set.  Returns the created profile, or
    ``None`` when nothing was created.
    """
    if not settings.BOOTSTRAP_ADMIN_EMAIL or not settings.BOOTSTRAP_ADMIN_PASSWORD:
        return None

    admin_count = (
        await db.execute(
            select(func.count())
            .select_from(MarshalProfile)
            .where(
                MarshalProfile.role == Role.ADMIN.value,
                MarshalProfile.approved.is_(True),
                MarshalProfile.suspended.is_(False),
            )
        )
    ).scalar_one()
    if admin_count:
        return None

    email = settings.BOOTSTRAP_ADMIN_EMAIL.strip().lower()
    existing = (
        await db.execute(select(Principal).where(Principal.email == email))
    ).scalar_one_or_none()
    if existing is not None:
        logger.warning(
            "Bootstrap admin %s already registered without Admin role; not touching it", email
        )
        return None

    principal = Principal(
        email=email,
        password_hash=hash_password(settings.BOOTSTRAP_ADMIN_PASSWORD),
    )
    db.add(principal)
    await db.flush()

    profile = MarshalProfile(
        id=principal.id,
        email=email,
        name=settings.BOOTSTRAP_ADMIN_NAME,
        phone="",
        role=Role.ADMIN.value,
        approved=True,
        approved_at=utcnow(),
        approved_by="system",
    )
    db.add(profile)
    await db.commit()

    logger.info(f"Bootstrap admin created: {email}")
    return profile
