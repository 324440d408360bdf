"""Taxi routes: the fleet registered at each rank."""
from __future__ import annotations

import datetime
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import SessionContext, require_permission, write_activity_log
from taxihub.models import Taxi, TaxiRank
from taxihub.rbac import Action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/taxis", tags=["taxis"])


class TaxiCreate(BaseModel):
    registration: str = Field(min_length=2, max_length=20)
    driver_name: str = Field(min_length=1, max_length=200)
    driver_phone: str | None = None
    aisle_name: str | None = None
    rank_id: uuid.UUID | None = None


class TaxiUpdate(BaseModel):
    driver_name: str | None = Field(None, min_length=1, max_length=200)
    driver_phone: str | None = None
    aisle_name: str | None = None
    rank_id: uuid.UUID | None = None


def normalize_registration(value: str) -> str:
    return "".join(value.split()).upper()


def membership_status(paid_until: datetime.date | None, today: datetime.date | None = None) -> str:
    """``paid`` while the current month is covered, ``overdue`` otherwise."""
    today = today or datetime.date.today()
    if paid_until is None or paid_until < today.replace(day=1):
        return "overdue"
    return "paid"


def taxi_to_dict(taxi: Taxi) -> dict:
    return {
        "id": str(taxi.id),
        "registration": taxi.registration,
        "driver_name": taxi.driver_name,
        "driver_phone": taxi.driver_phone,
        "rank_id": str(taxi.rank_id) if taxi.rank_id else None,
        "rank_name": taxi.rank.name if taxi.rank else None,
        "aisle_name": taxi.aisle_name,
        "membership_paid_until": (
            taxi.membership_paid_until.isoformat() if taxi.membership_paid_until else None
        ),
        "membership_status": membership_status(taxi.membership_paid_until),
        "total_loads": taxi.total_loads,
        "last_load_at": taxi.last_load_at.isoformat() if taxi.last_load_at else None,
        "created_at": taxi.created_at.isoformat() if taxi.created_at else None,
    }


async def get_scoped_taxi(db: AsyncSession, ctx: SessionContext, taxi_id: uuid.UUID) -> Taxi:
    """Load a taxi the caller may see; anything outside scope is a 404."""
    stmt = ctx.scoped_query("taxis").where(Taxi.id == taxi_id)
    taxi = (await db.execute(stmt)).scalar_one_or_none()
    if not taxi:
        raise HTTPException(status_code=404, detail="Taxi not found")
    return taxi


async def resolve_target_rank(
    db: AsyncSession, ctx: SessionContext, requested: uuid.UUID | None
) -> uuid.UUID:
    """Rank a new record belongs to.

    Rank-scoped callers always write to their own rank; global callers must
    name an existing rank.
    """
    if not ctx.is_global:
        if ctx.rank_id is None:
            raise HTTPException(
                status_code=403,
                detail="You are not assigned to a taxi rank. Please contact an administrator.",
            )
        return ctx.rank_id

    if requested is None:
        raise HTTPException(status_code=422, detail="Please select a taxi rank.")
    found = await db.execute(select(TaxiRank.id).where(TaxiRank.id == requested))
    if found.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Taxi rank not found")
    return requested


@router.get("")
async def list_taxis(
    search: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    stmt = ctx.scoped_query("taxis")
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(Taxi.registration.ilike(pattern), Taxi.driver_name.ilike(pattern))
        )
    stmt = stmt.order_by(Taxi.registration)

    taxis = (await db.execute(stmt)).scalars().all()
    items = [taxi_to_dict(t) for t in taxis]
    return {"items": items, "total": len(items)}


@router.get("/{taxi_id}")
async def get_taxi(
    taxi_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    return taxi_to_dict(await get_scoped_taxi(db, ctx, taxi_id))


@router.post("", status_code=201)
async def create_taxi(
    body: TaxiCreate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_TAXIS)),
):
    rank_id = await resolve_target_rank(db, ctx, body.rank_id)
    registration = normalize_registration(body.registration)

    existing = await db.execute(select(Taxi.id).where(Taxi.registration == registration))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=409,
            detail=f"Taxi {registration} is already registered.",
        )

    taxi = Taxi(
        registration=registration,
        driver_name=body.driver_name.strip(),
        driver_phone=body.driver_phone,
        aisle_name=body.aisle_name,
        rank_id=rank_id,
        created_by=ctx.email,
    )
    db.add(taxi)
    await db.flush()

    await write_activity_log(
        db,
        ctx,
        "taxi_added",
        target_type="taxi",
        target_id=str(taxi.id),
        details={"registration": registration, "rank_id": str(rank_id)},
    )
    await commit_or_fail(db, "register taxi")
    await db.refresh(taxi, ["rank"])

    logger.info(f"Taxi {registration} registered by {ctx.email}")
    return taxi_to_dict(taxi)


@router.put("/{taxi_id}")
async def update_taxi(
    taxi_id: uuid.UUID,
    body: TaxiUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_TAXIS)),
):
    """Edit a taxi.  Only global-scope callers may move it to another rank."""
    taxi = await get_scoped_taxi(db, ctx, taxi_id)
    changes: dict = {}

    if body.driver_name is not None:
        taxi.driver_name = body.driver_name.strip()
        changes["driver_name"] = taxi.driver_name
    if body.driver_phone is not None:
        taxi.driver_phone = body.driver_phone
        changes["driver_phone"] = body.driver_phone
    if body.aisle_name is not None:
        taxi.aisle_name = body.aisle_name
        changes["aisle_name"] = body.aisle_name
    if body.rank_id is not None and body.rank_id != taxi.rank_id:
        if not ctx.is_global:
            raise HTTPException(
                status_code=403,
                detail="Only an administrator can move a taxi to another rank.",
            )
        taxi.rank_id = await resolve_target_rank(db, ctx, body.rank_id)
        changes["rank_id"] = str(body.rank_id)

    await write_activity_log(
        db,
        ctx,
        "taxi_updated",
        target_type="taxi",
        target_id=str(taxi.id),
        details=changes,
    )
    await commit_or_fail(db, "update taxi")
    await db.refresh(taxi, ["rank"])

    return taxi_to_dict(taxi)


@router.delete("/{taxi_id}")
async def delete_taxi(
    taxi_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_TAXIS)),
):
    taxi = await get_scoped_taxi(db, ctx, taxi_id)
    registration = taxi.registration
    await db.delete(taxi)

    await write_activity_log(
        db,
        ctx,
        "taxi_deleted",
        target_type="taxi",
        target_id=str(taxi_id),
        details={"registration": registration},
    )
    await commit_or_fail(db, "delete taxi")
    return {"status": "deleted", "id": str(taxi_id)}
