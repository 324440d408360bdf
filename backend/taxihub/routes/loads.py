"""Load routes: recording taxi departures and the load board."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import SessionContext, require_permission, write_activity_log
from taxihub.models import Load, Taxi
from taxihub.rbac import Action
from taxihub.routes.taxis import get_scoped_taxi
from taxihub.services.reports import PERIODS, period_start

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/loads", tags=["loads"])


class LoadCreate(BaseModel):
    taxi_id: uuid.UUID


def load_to_dict(load: Load) -> dict:
    return {
        "id": str(load.id),
        "taxi_id": str(load.taxi_id) if load.taxi_id else None,
        "rank_id": str(load.rank_id) if load.rank_id else None,
        "registration": load.registration,
        "driver_name": load.driver_name,
        "marshal_id": str(load.marshal_id) if load.marshal_id else None,
        "marshal_email": load.marshal_email,
        "recorded_at": load.recorded_at.isoformat() if load.recorded_at else None,
    }


@router.post("", status_code=201)
async def record_load(
    body: LoadCreate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.RECORD_LOADS)),
):
    """Record a departure and bump the taxi's load counter.

    The load row and the counter update commit together; the counter is
    incremented in SQL so concurrent loads never lose an update.
    """
    taxi = await get_scoped_taxi(db, ctx, body.taxi_id)
    now = datetime.now(timezone.utc)

    load = Load(
        taxi_id=taxi.id,
        rank_id=taxi.rank_id,
        registration=taxi.registration,
        driver_name=taxi.driver_name,
        marshal_id=ctx.profile_id,
        marshal_email=ctx.email,
        recorded_at=now,
    )
    db.add(load)
    await db.execute(
        update(Taxi)
        .where(Taxi.id == taxi.id)
        .values(total_loads=Taxi.total_loads + 1, last_load_at=now)
        .execution_options(synchronize_session=False)
    )
    await write_activity_log(
        db,
        ctx,
        "load_recorded",
        target_type="taxi",
        target_id=str(taxi.id),
        details={"registration": taxi.registration},
    )
    await commit_or_fail(db, "record load")
    await db.refresh(taxi, ["total_loads", "last_load_at"])

    return {**load_to_dict(load), "total_loads": taxi.total_loads}


@router.get("")
async def list_loads(
    period: str = Query("today"),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    """Loads in the caller's scope for ``period`` plus today/week/month counts."""
    if period not in PERIODS:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid period '{period}'. Valid periods: {', '.join(PERIODS)}",
        )

    now = datetime.now(timezone.utc)
    stmt = (
        ctx.scoped_query("loads")
        .where(Load.recorded_at >= period_start(period, now))
        .order_by(Load.recorded_at.desc())
    )
    loads = (await db.execute(stmt)).scalars().all()

    counts = {}
    for name in PERIODS:
        count_stmt = ctx.apply_scope(
            select(func.count(Load.id)).where(Load.recorded_at >= period_start(name, now)),
            "loads",
        )
        counts[name] = (await db.execute(count_stmt)).scalar_one()

    items = [load_to_dict(l) for l in loads]
    return {"items": items, "total": len(items), "period": period, "counts": counts}
