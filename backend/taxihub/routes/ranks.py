"""Taxi rank routes: rank directory CRUD, marshal assignment, fare lists."""
from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import SessionContext, require_permission, write_activity_log
from taxihub.models import Aisle, Fare, Load, MarshalProfile, Meeting, Payment, Taxi, TaxiRank
from taxihub.rbac import Action, Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ranks", tags=["ranks"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class AisleIn(BaseModel):
    aisle_number: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=100)
    capacity: int = Field(0, ge=0)
    routes: list[str] = []


class FareIn(BaseModel):
    route: str = Field(min_length=1, max_length=200)
    price: float = Field(ge=0)


class FareUpdate(BaseModel):
    route: str | None = Field(None, min_length=1, max_length=200)
    price: float | None = Field(None, ge=0)


class RankCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1, max_length=300)
    description: str | None = None
    city: str | None = None
    province: str | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    capacity: int | None = Field(None, ge=0)
    status: str = "active"
    opening_time: str | None = None
    closing_time: str | None = None
    facilities: list[str] = []
    aisles: list[AisleIn] = []
    fares: list[FareIn] = []


class RankUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    address: str | None = Field(None, min_length=1, max_length=300)
    description: str | None = None
    city: str | None = None
    province: str | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    capacity: int | None = Field(None, ge=0)
    status: str | None = None
    opening_time: str | None = None
    closing_time: str | None = None
    facilities: list[str] | None = None
    aisles: list[AisleIn] | None = None
    fares: list[FareIn] | None = None


class MarshalAssignment(BaseModel):
    profile_ids: list[uuid.UUID]


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def fare_to_dict(fare: Fare) -> dict:
    return {"id": str(fare.id), "route": fare.route, "price": float(fare.price)}


def rank_to_dict(rank: TaxiRank) -> dict:
    """Rank with its aisles and fares; ``location`` is ``None`` when the rank
    has no coordinates."""
    location = None
    if rank.latitude is not None and rank.longitude is not None:
        location = {"lat": rank.latitude, "lng": rank.longitude}
    return {
        "id": str(rank.id),
        "name": rank.name,
        "address": rank.address,
        "description": rank.description,
        "city": rank.city,
        "province": rank.province,
        "location": location,
        "capacity": rank.capacity,
        "status": rank.status,
        "opening_time": rank.opening_time,
        "closing_time": rank.closing_time,
        "facilities": list(rank.facilities or []),
        "aisles": [
            {
                "id": str(a.id),
                "aisle_number": a.aisle_number,
                "name": a.name,
                "capacity": a.capacity,
                "routes": list(a.routes or []),
            }
            for a in rank.aisles
        ],
        "fares": [fare_to_dict(f) for f in rank.fares],
        "created_by": rank.created_by,
        "created_at": rank.created_at.isoformat() if rank.created_at else None,
        "updated_at": rank.updated_at.isoformat() if rank.updated_at else None,
    }


def _build_aisles(aisles: list[AisleIn]) -> list[Aisle]:
    return [
        Aisle(
            position=i,
            aisle_number=a.aisle_number,
            name=a.name,
            capacity=a.capacity,
            routes=list(a.routes),
        )
        for i, a in enumerate(aisles)
    ]


def _build_fares(fares: list[FareIn]) -> list[Fare]:
    return [
        Fare(position=i, route=f.route, price=Decimal(str(f.price)))
        for i, f in enumerate(fares)
    ]


def _check_coordinates(latitude: float | None, longitude: float | None) -> None:
    if (latitude is None) != (longitude is None):
        raise HTTPException(
            status_code=422,
            detail="Provide both latitude and longitude, or neither.",
        )


async def get_scoped_rank(db: AsyncSession, ctx: SessionContext, rank_id: uuid.UUID) -> TaxiRank:
    """Load a rank the caller may see; anything outside scope is a 404."""
    stmt = ctx.scoped_query("taxiRanks").where(TaxiRank.id == rank_id)
    rank = (await db.execute(stmt)).scalar_one_or_none()
    if not rank:
        raise HTTPException(status_code=404, detail="Taxi rank not found")
    return rank


async def _assigned_profiles(db: AsyncSession, rank_id: uuid.UUID) -> list[MarshalProfile]:
    stmt = (
        select(MarshalProfile)
        .where(MarshalProfile.rank_id == rank_id)
        .order_by(MarshalProfile.name)
    )
    return list((await db.execute(stmt)).scalars().all())


def _check_not_stranded(profiles: list[MarshalProfile]) -> None:
    """An approved Marshal always works from a rank."""
    stranded = [
        p.email for p in profiles
        if p.approved and p.role == Role.MARSHAL.value
    ]
    if stranded:
        raise HTTPException(
            status_code=422,
            detail=f"Marshals need a taxi rank. Assign {', '.join(stranded)} to another rank first.",
        )


# ---------------------------------------------------------------------------
# RANKS
# ---------------------------------------------------------------------------


@router.get("")
async def list_ranks(
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    stmt = ctx.scoped_query("taxiRanks").order_by(TaxiRank.name)
    ranks = (await db.execute(stmt)).scalars().all()
    items = [rank_to_dict(r) for r in ranks]
    return {"items": items, "total": len(items)}


@router.get("/{rank_id}")
async def get_rank(
    rank_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    rank = await get_scoped_rank(db, ctx, rank_id)
    marshals = await _assigned_profiles(db, rank.id)
    return {
        **rank_to_dict(rank),
        "assigned_marshals": [
            {"id": str(m.id), "name": m.name, "email": m.email, "role": m.role}
            for m in marshals
        ],
    }


@router.post("", status_code=201)
async def create_rank(
    body: RankCreate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    _check_coordinates(body.latitude, body.longitude)

    rank = TaxiRank(
        name=body.name.strip(),
        address=body.address.strip(),
        description=body.description,
        city=body.city,
        province=body.province,
        latitude=body.latitude,
        longitude=body.longitude,
        capacity=body.capacity,
        status=body.status,
        opening_time=body.opening_time,
        closing_time=body.closing_time,
        facilities=list(body.facilities),
        created_by=ctx.email,
        aisles=_build_aisles(body.aisles),
        fares=_build_fares(body.fares),
    )
    db.add(rank)
    await db.flush()

    await write_activity_log(
        db,
        ctx,
        "rank_created",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"name": rank.name, "aisles": len(body.aisles), "fares": len(body.fares)},
    )
    await commit_or_fail(db, "create taxi rank")

    logger.info(f"Taxi rank '{rank.name}' created by {ctx.email}")
    return rank_to_dict(rank)


@router.put("/{rank_id}")
async def update_rank(
    rank_id: uuid.UUID,
    body: RankUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    """Edit a rank.  ``aisles`` and ``fares`` replace the stored lists when
    supplied and are left alone otherwise."""
    rank = await get_scoped_rank(db, ctx, rank_id)
    changes = body.model_dump(exclude_unset=True, exclude={"aisles", "fares"})
    for field in ("name", "address", "status", "facilities"):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=422, detail=f"'{field}' cannot be empty.")

    _check_coordinates(
        changes.get("latitude", rank.latitude),
        changes.get("longitude", rank.longitude),
    )

    for field, value in changes.items():
        setattr(rank, field, value)
    if body.aisles is not None:
        rank.aisles = _build_aisles(body.aisles)
        changes["aisles"] = len(body.aisles)
    if body.fares is not None:
        rank.fares = _build_fares(body.fares)
        changes["fares"] = len(body.fares)
    rank.updated_by = ctx.email

    await write_activity_log(
        db,
        ctx,
        "rank_updated",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"fields": sorted(changes)},
    )
    await commit_or_fail(db, "update taxi rank")

    return rank_to_dict(rank)


@router.delete("/{rank_id}")
async def delete_rank(
    rank_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    """Delete a rank; assigned users and taxis keep existing without a rank."""
    rank = await get_scoped_rank(db, ctx, rank_id)
    name = rank.name

    unassigned = await db.execute(
        update(MarshalProfile).where(MarshalProfile.rank_id == rank.id).values(rank_id=None)
    )
    detached = await db.execute(
        update(Taxi).where(Taxi.rank_id == rank.id).values(rank_id=None)
    )
    # history rows stay, without a rank
    for model in (Load, Payment, Meeting):
        await db.execute(
            update(model)
            .where(model.rank_id == rank.id)
            .values(rank_id=None)
            .execution_options(synchronize_session=False)
        )
    await db.delete(rank)

    await write_activity_log(
        db,
        ctx,
        "rank_deleted",
        target_type="taxi_rank",
        target_id=str(rank_id),
        details={
            "name": name,
            "unassigned_users": unassigned.rowcount,
            "detached_taxis": detached.rowcount,
        },
    )
    await commit_or_fail(db, "delete taxi rank")

    logger.info(f"Taxi rank '{name}' deleted by {ctx.email}")
    return {"status": "deleted", "id": str(rank_id)}


# ---------------------------------------------------------------------------
# MARSHAL ASSIGNMENT
# ---------------------------------------------------------------------------


@router.put("/{rank_id}/marshals")
async def assign_marshals(
    rank_id: uuid.UUID,
    body: MarshalAssignment,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    """Make ``profile_ids`` the exact set of users assigned to this rank."""
    rank = await get_scoped_rank(db, ctx, rank_id)
    wanted = set(body.profile_ids)

    if wanted:
        found = await db.execute(select(MarshalProfile).where(MarshalProfile.id.in_(wanted)))
        profiles = {p.id: p for p in found.scalars().all()}
        missing = wanted - profiles.keys()
        if missing:
            raise HTTPException(
                status_code=404,
                detail=f"Users not found: {', '.join(sorted(str(m) for m in missing))}",
            )
    else:
        profiles = {}

    current = await _assigned_profiles(db, rank.id)
    _check_not_stranded([p for p in current if p.id not in wanted])
    added = 0
    removed = 0
    for profile in current:
        if profile.id not in wanted:
            profile.rank_id = None
            removed += 1
    current_ids = {p.id for p in current}
    for profile_id, profile in profiles.items():
        if profile_id not in current_ids:
            profile.rank_id = rank.id
            added += 1

    await write_activity_log(
        db,
        ctx,
        "rank_marshals_assigned",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"added": added, "removed": removed},
    )
    await commit_or_fail(db, "assign marshals")

    return {"rank_id": str(rank.id), "added": added, "removed": removed, "total": len(wanted)}


@router.delete("/{rank_id}/marshals/{profile_id}")
async def remove_marshal(
    rank_id: uuid.UUID,
    profile_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    rank = await get_scoped_rank(db, ctx, rank_id)
    result = await db.execute(
        select(MarshalProfile).where(
            MarshalProfile.id == profile_id,
            MarshalProfile.rank_id == rank.id,
        )
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="User is not assigned to this rank")
    _check_not_stranded([profile])

    profile.rank_id = None
    await write_activity_log(
        db,
        ctx,
        "rank_marshal_removed",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"profile_id": str(profile_id), "email": profile.email},
    )
    await commit_or_fail(db, "remove marshal from rank")
    return {"status": "removed", "rank_id": str(rank.id), "profile_id": str(profile_id)}


# ---------------------------------------------------------------------------
# FARES
# ---------------------------------------------------------------------------


def _find_fare(rank: TaxiRank, fare_id: uuid.UUID) -> Fare:
    for fare in rank.fares:
        if fare.id == fare_id:
            return fare
    raise HTTPException(status_code=404, detail="Fare not found")


@router.post("/{rank_id}/fares", status_code=201)
async def add_fare(
    rank_id: uuid.UUID,
    body: FareIn,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    rank = await get_scoped_rank(db, ctx, rank_id)
    position = max((f.position for f in rank.fares), default=-1) + 1
    fare = Fare(position=position, route=body.route, price=Decimal(str(body.price)))
    rank.fares.append(fare)
    await db.flush()

    await write_activity_log(
        db,
        ctx,
        "fare_added",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"route": body.route, "price": body.price},
    )
    await commit_or_fail(db, "add fare")
    return fare_to_dict(fare)


@router.put("/{rank_id}/fares/{fare_id}")
async def update_fare(
    rank_id: uuid.UUID,
    fare_id: uuid.UUID,
    body: FareUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    rank = await get_scoped_rank(db, ctx, rank_id)
    fare = _find_fare(rank, fare_id)

    if body.route is not None:
        fare.route = body.route
    if body.price is not None:
        fare.price = Decimal(str(body.price))

    await write_activity_log(
        db,
        ctx,
        "fare_updated",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"fare_id": str(fare_id), "route": fare.route, "price": float(fare.price)},
    )
    await commit_or_fail(db, "update fare")
    return fare_to_dict(fare)


@router.delete("/{rank_id}/fares/{fare_id}")
async def delete_fare(
    rank_id: uuid.UUID,
    fare_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.ADD_RANKS)),
):
    rank = await get_scoped_rank(db, ctx, rank_id)
    fare = _find_fare(rank, fare_id)
    rank.fares.remove(fare)

    await write_activity_log(
        db,
        ctx,
        "fare_deleted",
        target_type="taxi_rank",
        target_id=str(rank.id),
        details={"fare_id": str(fare_id), "route": fare.route},
    )
    await commit_or_fail(db, "delete fare")
    return {"status": "deleted", "id": str(fare_id)}
