"""Report routes: dashboard summary and CSV export."""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import get_db
from taxihub.middleware.auth import SessionContext, require_permission
from taxihub.models import Load
from taxihub.rbac import Action
from taxihub.services.reports import PERIODS, ReportService, loads_to_csv, period_start

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/summary")
async def report_summary(
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW_REPORTS)),
):
    """Operational counts for the caller's scope; Admins also get user
    statistics and recommendations."""
    summary = await ReportService(db, ctx).summary()
    summary["generated_at"] = datetime.now(timezone.utc).isoformat()
    return summary


@router.get("/loads.csv")
async def export_loads_csv(
    period: str = Query("month"),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW_REPORTS)),
):
    if period not in PERIODS:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid period '{period}'. Valid periods: {', '.join(PERIODS)}",
        )

    stmt = (
        ctx.scoped_query("loads")
        .where(Load.recorded_at >= period_start(period))
        .order_by(Load.recorded_at.desc())
    )
    loads = (await db.execute(stmt)).scalars().all()

    return Response(
        content=loads_to_csv(loads),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="loads-{period}.csv"'},
    )
