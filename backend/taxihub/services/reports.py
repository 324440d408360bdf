"""Report service: operational counts, user statistics and CSV exports."""
from __future__ import annotations

import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.models import Load, MarshalProfile, Payment, Taxi, TaxiRank
from taxihub.rbac import Role

PERIODS = ("today", "week", "month")

LOAD_CSV_FIELDS = ["recorded_at", "registration", "driver_name", "marshal_email", "rank_id"]


def period_start(period: str, now: datetime | None = None) -> datetime:
    """Start of a reporting window: midnight UTC today, or 7 / 30 days back."""
    now = now or datetime.now(timezone.utc)
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    raise ValueError(f"Unknown period '{period}'. Valid periods: {', '.join(PERIODS)}")


def loads_to_csv(loads: Iterable[Any]) -> str:
    """Render load rows as CSV text with a header line."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=LOAD_CSV_FIELDS, lineterminator="\n")
    writer.writeheader()
    for load in loads:
        writer.writerow({
            "recorded_at": load.recorded_at.isoformat() if load.recorded_at else "",
            "registration": load.registration,
            "driver_name": load.driver_name,
            "marshal_email": load.marshal_email,
            "rank_id": str(load.rank_id) if load.rank_id else "",
        })
    return buffer.getvalue()


def build_recommendations(stats: dict[str, int]) -> list[str]:
    recommendations = []
    if stats["pendingUsers"] > 0:
        recommendations.append("Review pending user approvals")
    if stats["suspendedUsers"] > 0:
        recommendations.append("Review suspended user accounts")
    if stats["activeMarshals"] == 0:
        recommendations.append("Assign marshals to taxi ranks")
    if stats["totalRanks"] == 0:
        recommendations.append("Create taxi ranks for marshal assignments")
    return recommendations


class ReportService:
    """Builds the dashboard summary for one session context.

    Operational counts go through the caller's rank scope; user statistics
    are only included for global-scope callers.
    """

    def __init__(self, db: AsyncSession, ctx: Any):
        self.db = db
        self.ctx = ctx

    async def _count(self, stmt) -> int:
        return (await self.db.execute(stmt)).scalar_one() or 0

    async def operational_counts(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        today = period_start("today", now)
        week_ago = now - timedelta(days=7)
        day_ago = now - timedelta(hours=24)

        loads_today = await self._count(
            self.ctx.apply_scope(
                select(func.count(Load.id)).where(Load.recorded_at >= today), "loads"
            )
        )
        revenue = (
            await self.db.execute(
                self.ctx.apply_scope(
                    select(func.coalesce(func.sum(Payment.amount), 0)).where(
                        Payment.recorded_at >= week_ago
                    ),
                    "payments",
                )
            )
        ).scalar_one()
        active_marshals = await self._count(
            self.ctx.apply_scope(
                select(func.count(func.distinct(Load.marshal_id))).where(
                    Load.recorded_at >= day_ago
                ),
                "loads",
            )
        )
        total_taxis = await self._count(
            self.ctx.apply_scope(select(func.count(Taxi.id)), "taxis")
        )
        return {
            "loadsToday": loads_today,
            "revenueLast7Days": round(float(revenue or 0), 2),
            "activeMarshals24h": active_marshals,
            "totalTaxis": total_taxis,
        }

    async def user_statistics(self) -> dict[str, int]:
        profiles = (await self.db.execute(select(MarshalProfile))).scalars().all()
        total_ranks = await self._count(select(func.count(TaxiRank.id)))

        def _active(role: Role) -> int:
            return sum(
                1 for p in profiles
                if p.approved and not p.suspended and p.role == role.value
            )

        return {
            "totalUsers": len(profiles),
            "approvedUsers": sum(1 for p in profiles if p.approved),
            "pendingUsers": sum(1 for p in profiles if not p.approved),
            "totalRanks": total_ranks,
            "activeAdmins": _active(Role.ADMIN),
            "activeSupervisors": _active(Role.SUPERVISOR),
            "activeMarshals": _active(Role.MARSHAL),
            "suspendedUsers": sum(1 for p in profiles if p.suspended),
        }

    async def summary(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "scope": self.ctx.scope,
            "operations": await self.operational_counts(),
        }
        if self.ctx.is_global:
            stats = await self.user_statistics()
            result["users"] = stats
            result["recommendations"] = build_recommendations(stats)
        return result
