"""Administration routes: approvals, user management, roles, activity log."""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import (
    SessionContext,
    hash_password,
    require_permission,
    write_activity_log,
)
from taxihub.models import ActivityLog, MarshalProfile, Principal, TaxiRank
from taxihub.models.base import utcnow
from taxihub.rbac import (
    GLOBAL_SCOPE_ROLES,
    ROLE_PERMISSIONS,
    VALID_ROLES,
    Action,
    Role,
    permission_description,
)
from taxihub.routes.auth import profile_to_dict
from taxihub.services.session_resolver import sign_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class ApproveRequest(BaseModel):
    role: str
    rank_id: uuid.UUID | None = None


class UserUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    role: str | None = None
    rank_id: uuid.UUID | None = None


class SuspensionRequest(BaseModel):
    suspended: bool


class AdminCreate(BaseModel):
    email: str = Field(min_length=3, max_length=200)
    password: str = Field(min_length=6)
    name: str = Field(min_length=1, max_length=200)
    phone: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_profile(db: AsyncSession, user_id: uuid.UUID) -> MarshalProfile:
    result = await db.execute(select(MarshalProfile).where(MarshalProfile.id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


async def _get_principal(db: AsyncSession, user_id: uuid.UUID) -> Principal:
    result = await db.execute(select(Principal).where(Principal.id == user_id))
    principal = result.scalar_one_or_none()
    if not principal:
        raise HTTPException(status_code=404, detail="User not found")
    return principal


async def _ensure_rank_exists(db: AsyncSession, rank_id: uuid.UUID) -> None:
    result = await db.execute(select(TaxiRank.id).where(TaxiRank.id == rank_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Taxi rank not found")


def _validate_role(role: str) -> None:
    if role not in VALID_ROLES:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid role '{role}'. Valid roles: {', '.join(VALID_ROLES)}",
        )


def active_admins_query():
    """Approved, unsuspended Admins, row-locked until the caller's commit.

    ``FOR UPDATE`` cannot be combined with an aggregate, so the ids are
    selected and counted in Python.  SQLite ignores the lock clause.
    """
    return (
        select(MarshalProfile.id)
        .where(
            MarshalProfile.role == Role.ADMIN.value,
            MarshalProfile.approved.is_(True),
            MarshalProfile.suspended.is_(False),
        )
        .with_for_update()
    )


async def _admin_count(db: AsyncSession) -> int:
    result = await db.execute(active_admins_query())
    return len(result.scalars().all())


async def _guard_last_admin(db: AsyncSession, target: MarshalProfile, what: str) -> None:
    """Refuse to take away the last usable Admin."""
    if (
        target.role == Role.ADMIN.value
        and target.approved
        and not target.suspended
        and await _admin_count(db) <= 1
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {what} the last Admin. Appoint another Admin first.",
        )


# ---------------------------------------------------------------------------
# APPROVALS
# ---------------------------------------------------------------------------


@router.get("/users/pending")
async def list_pending_users(
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.APPROVE_USERS)),
):
    """Registrations waiting for an Admin decision, newest first."""
    stmt = (
        select(MarshalProfile)
        .where(MarshalProfile.approved.is_(False))
        .order_by(MarshalProfile.created_at.desc())
    )
    result = await db.execute(stmt)
    items = [profile_to_dict(p) for p in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.post("/users/{user_id}/approve")
async def approve_user(
    user_id: uuid.UUID,
    body: ApproveRequest,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.APPROVE_USERS)),
):
    """Approve a pending registration, assigning its role (and rank)."""
    _validate_role(body.role)
    if body.role == Role.MARSHAL.value and body.rank_id is None:
        raise HTTPException(
            status_code=422,
            detail="Please select a taxi rank for the Marshal.",
        )

    target = await _get_profile(db, user_id)
    if target.approved:
        raise HTTPException(status_code=409, detail="User is already approved")

    if body.rank_id is not None:
        await _ensure_rank_exists(db, body.rank_id)

    target.approved = True
    target.approved_at = utcnow()
    target.approved_by = ctx.email
    target.role = body.role
    target.rank_id = body.rank_id

    await write_activity_log(
        db,
        ctx,
        "user_approved",
        target_type="marshal",
        target_id=str(target.id),
        details={
            "email": target.email,
            "role": body.role,
            "rank_id": str(body.rank_id) if body.rank_id else None,
        },
    )
    await commit_or_fail(db, "approve user")
    await db.refresh(target, ["rank"])

    logger.info(f"User {target.email} approved as {body.role} by {ctx.email}")
    return profile_to_dict(target)


@router.post("/users/{user_id}/reject")
async def reject_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.APPROVE_USERS)),
):
    """Permanently delete a pending registration."""
    principal = await _get_principal(db, user_id)
    target = await _get_profile(db, user_id)
    if target.approved:
        raise HTTPException(
            status_code=409,
            detail="Only pending registrations can be rejected. Delete the user instead.",
        )

    email = target.email
    await db.delete(principal)
    await write_activity_log(
        db,
        ctx,
        "user_rejected",
        target_type="marshal",
        target_id=str(user_id),
        details={"email": email},
    )
    await commit_or_fail(db, "reject user")

    logger.info(f"Registration {email} rejected by {ctx.email}")
    return {"status": "rejected", "id": str(user_id)}


# ---------------------------------------------------------------------------
# USER MANAGEMENT
# ---------------------------------------------------------------------------


@router.get("/users")
async def list_users(
    role: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.MANAGE_USERS)),
):
    """List approved users, optionally filtered by role."""
    stmt = select(MarshalProfile).where(MarshalProfile.approved.is_(True))
    if role:
        _validate_role(role)
        stmt = stmt.where(MarshalProfile.role == role)
    stmt = stmt.order_by(MarshalProfile.name)

    result = await db.execute(stmt)
    items = [profile_to_dict(p) for p in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.put("/users/{user_id}")
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.MANAGE_USERS)),
):
    """Edit a user's details, role or rank.

    Sending ``rank_id: null`` explicitly clears the rank assignment.
    """
    target = await _get_profile(db, user_id)
    changes: dict = {}

    role_changed = body.role is not None and body.role != target.role
    if role_changed:
        if not ctx.has_permission(Action.ASSIGN_ROLES):
            raise HTTPException(status_code=403, detail="Missing permissions: assign_roles.")
        _validate_role(body.role)
        await _guard_last_admin(db, target, "demote")

    new_rank_id = body.rank_id if "rank_id" in body.model_fields_set else target.rank_id
    new_role = body.role if role_changed else target.role
    if new_role == Role.MARSHAL.value and target.approved and new_rank_id is None:
        raise HTTPException(status_code=422, detail="Please select a taxi rank for the Marshal.")
    if new_rank_id is not None and new_rank_id != target.rank_id:
        await _ensure_rank_exists(db, new_rank_id)

    if body.name is not None:
        changes["name"] = body.name
        target.name = body.name
    if body.phone is not None:
        changes["phone"] = body.phone
        target.phone = body.phone
    if new_rank_id != target.rank_id:
        changes["rank_id"] = str(new_rank_id) if new_rank_id else None
        target.rank_id = new_rank_id

    previous_role = target.role
    if role_changed:
        target.role = body.role

    await write_activity_log(
        db,
        ctx,
        "user_edited",
        target_type="marshal",
        target_id=str(user_id),
        details=changes,
    )
    if role_changed:
        await write_activity_log(
            db,
            ctx,
            "role_changed",
            target_type="marshal",
            target_id=str(user_id),
            details={"from": previous_role, "to": body.role},
        )
    await commit_or_fail(db, "update user")
    await db.refresh(target, ["rank"])

    return profile_to_dict(target)


@router.put("/users/{user_id}/suspension")
async def set_suspension(
    user_id: uuid.UUID,
    body: SuspensionRequest,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.MANAGE_USERS)),
):
    """Suspend or reinstate a user.  Suspension also ends their sessions."""
    target = await _get_profile(db, user_id)
    if body.suspended and target.id == ctx.profile_id:
        raise HTTPException(status_code=409, detail="You cannot suspend your own account.")
    if body.suspended:
        await _guard_last_admin(db, target, "suspend")

    target.suspended = body.suspended
    if body.suspended:
        target.suspended_at = utcnow()
        target.suspended_by = ctx.email
    else:
        target.suspended_at = None
        target.suspended_by = None

    await write_activity_log(
        db,
        ctx,
        "user_suspended" if body.suspended else "user_unsuspended",
        target_type="marshal",
        target_id=str(user_id),
        details={"email": target.email},
    )
    await commit_or_fail(db, "update user suspension")

    if body.suspended:
        await sign_out(db, target.id)

    return profile_to_dict(target)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.MANAGE_USERS)),
):
    """Delete a user's profile and credentials.  The last Admin is kept."""
    target = await _get_profile(db, user_id)
    await _guard_last_admin(db, target, "delete")
    principal = await _get_principal(db, user_id)

    email = target.email
    await db.delete(principal)
    await write_activity_log(
        db,
        ctx,
        "user_deleted",
        target_type="marshal",
        target_id=str(user_id),
        details={"email": email, "role": target.role},
    )
    await commit_or_fail(db, "delete user")

    logger.info(f"User {email} deleted by {ctx.email}")
    return {"status": "deleted", "id": str(user_id)}


@router.post("/admins", status_code=201)
async def create_admin(
    body: AdminCreate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.APPROVE_USERS)),
):
    """Create an Admin account that is approved immediately."""
    email = body.email.strip().lower()
    existing = await db.execute(select(Principal).where(Principal.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=409,
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
        role=Role.ADMIN.value,
        approved=True,
        approved_at=utcnow(),
        approved_by=ctx.email,
    )
    db.add(profile)
    await db.flush()

    await write_activity_log(
        db,
        ctx,
        "admin_created",
        target_type="marshal",
        target_id=str(profile.id),
        details={"email": email},
    )
    await commit_or_fail(db, "create admin")
    await db.refresh(profile, ["rank"])

    return profile_to_dict(profile)


# ---------------------------------------------------------------------------
# ROLES
# ---------------------------------------------------------------------------


@router.get("/roles")
async def list_roles(
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    """List every role with its permitted actions and data scope."""
    roles = []
    for role, actions in ROLE_PERMISSIONS.items():
        roles.append({
            "code": role.value,
            "permissions": [
                {"code": a.value, "description": permission_description(a)}
                for a in actions
            ],
            "scope": "global" if role in GLOBAL_SCOPE_ROLES else "rank",
        })
    return {"roles": roles}


# ---------------------------------------------------------------------------
# ACTIVITY LOG
# ---------------------------------------------------------------------------


@router.get("/activity-logs")
async def list_activity_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    action: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    """Paginated activity trail, newest first.

    Activity has no rank dimension, so rank-scoped roles see an empty page.
    """
    stmt = ctx.scoped_query("activityLogs")
    count_stmt = ctx.apply_scope(select(func.count(ActivityLog.id)), "activityLogs")

    if action:
        stmt = stmt.where(ActivityLog.action == action)
        count_stmt = count_stmt.where(ActivityLog.action == action)

    total = (await db.execute(count_stmt)).scalar()

    offset = (page - 1) * page_size
    stmt = stmt.order_by(ActivityLog.created_at.desc()).offset(offset).limit(page_size)
    entries = (await db.execute(stmt)).scalars().all()

    items = [
        {
            "id": str(e.id),
            "actor_id": str(e.actor_id) if e.actor_id else None,
            "actor_email": e.actor_email,
            "action": e.action,
            "target_type": e.target_type,
            "target_id": e.target_id,
            "details": e.details,
            "ip_address": e.ip_address,
            "success": e.success,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in entries
    ]

    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
    }
