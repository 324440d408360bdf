"""Public directory routes (no authentication).

Commuters browse ranks, search routes and find the nearest rank.  Every
successful read is mirrored into the offline cache; when the database cannot
be reached the cached copy is served instead, flagged ``offline: true``.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.config import settings
from taxihub.database import get_db
from taxihub.models import Load, TaxiRank
from taxihub.routes.ranks import rank_to_dict
from taxihub.services.geo import SORT_MODES, distance_to, matches_search, show_nearby_ranks, sort_ranks
from taxihub.services.offline_cache import get_offline_cache
from taxihub.services.reports import period_start

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/public", tags=["public"])

QUEUE_BOARD_SIZE = 20


@router.get("/ranks")
async def list_public_ranks(
    search: str | None = Query(None),
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    nearby: bool = Query(False),
    radius_km: float | None = Query(None, gt=0),
    sort: str = Query("distance"),
    db: AsyncSession = Depends(get_db),
):
    if sort not in SORT_MODES:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid sort '{sort}'. Valid modes: {', '.join(SORT_MODES)}",
        )
    if (lat is None) != (lng is None):
        raise HTTPException(status_code=422, detail="Provide both lat and lng, or neither.")

    cache = get_offline_cache()
    offline = False
    try:
        result = await db.execute(select(TaxiRank).order_by(TaxiRank.name))
        directory = [rank_to_dict(r) for r in result.scalars().all()]
        await cache.save_taxi_ranks_async(directory)
    except SQLAlchemyError:
        logger.warning("Rank directory read failed; serving offline copy", exc_info=True)
        directory = await cache.get_taxi_ranks_async()
        if directory is None:
            raise HTTPException(
                status_code=503,
                detail="The rank directory is not available offline yet. Please try again when connected.",
            )
        offline = True

    if search and search.strip():
        await cache.save_last_search_async(search.strip())
        directory = [r for r in directory if matches_search(r, search)]

    location = (lat, lng) if lat is not None else None
    if nearby and location is not None:
        threshold = radius_km or settings.NEARBY_RADIUS_KM
        ranks = show_nearby_ranks(directory, location, threshold_km=threshold, sort=sort)
    else:
        ranks = sort_ranks(directory, sort=sort, user_location=location)

    items = []
    for rank in ranks:
        dist = distance_to(rank, location)
        items.append({**rank, "distance_km": round(dist, 2) if dist is not None else None})

    return {
        "items": items,
        "total": len(items),
        "location_aware": location is not None,
        "offline": offline,
        "last_search": await cache.get_last_search_async(),
    }


@router.get("/ranks/{rank_id}/queue")
async def rank_queue(
    rank_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Today's departures from one rank."""
    cache = get_offline_cache()
    try:
        rank = (
            await db.execute(select(TaxiRank).where(TaxiRank.id == rank_id))
        ).scalar_one_or_none()
        if rank is None:
            raise HTTPException(status_code=404, detail="Taxi rank not found")

        today = period_start("today")
        count = (
            await db.execute(
                select(func.count(Load.id)).where(Load.rank_id == rank_id, Load.recorded_at >= today)
            )
        ).scalar_one()
        recent = (
            await db.execute(
                select(Load)
                .where(Load.rank_id == rank_id, Load.recorded_at >= today)
                .order_by(Load.recorded_at.desc())
                .limit(QUEUE_BOARD_SIZE)
            )
        ).scalars().all()
    except SQLAlchemyError:
        logger.warning(f"Queue read failed for rank {rank_id}; serving offline copy", exc_info=True)
        cached = await cache.get_queue_data_async(str(rank_id))
        if cached is None:
            raise HTTPException(
                status_code=503,
                detail="Queue data for this rank is not available offline. Please try again when connected.",
            )
        return {**cached, "offline": True}

    data = {
        "rank_id": str(rank.id),
        "rank_name": rank.name,
        "loads_today": count,
        "last_departure": recent[0].recorded_at.isoformat() if recent else None,
        "recent": [
            {
                "registration": l.registration,
                "driver_name": l.driver_name,
                "recorded_at": l.recorded_at.isoformat(),
            }
            for l in recent
        ],
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    await cache.save_queue_data_async(str(rank_id), data)
    return {**data, "offline": False}
