"""Payment routes: monthly membership payments per taxi."""
from __future__ import annotations

import datetime
import logging
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taxihub.database import commit_or_fail, get_db
from taxihub.middleware.auth import SessionContext, require_permission, write_activity_log
from taxihub.models import Payment, Taxi
from taxihub.rbac import Action
from taxihub.routes.taxis import get_scoped_taxi

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


class PaymentCreate(BaseModel):
    taxi_id: uuid.UUID
    amount: float = Field(gt=0)
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    payment_type: str = "monthly"
    notes: str | None = None


def payment_to_dict(payment: Payment) -> dict:
    return {
        "id": str(payment.id),
        "taxi_id": str(payment.taxi_id) if payment.taxi_id else None,
        "rank_id": str(payment.rank_id) if payment.rank_id else None,
        "registration": payment.registration,
        "amount": float(payment.amount),
        "month": payment.month,
        "year": payment.year,
        "payment_type": payment.payment_type,
        "notes": payment.notes,
        "recorded_by": payment.recorded_by,
        "recorded_at": payment.recorded_at.isoformat() if payment.recorded_at else None,
    }


@router.post("", status_code=201)
async def record_payment(
    body: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.RECORD_PAYMENTS)),
):
    """Record a membership payment and extend the taxi's paid-until date.

    Paid-until becomes the first day of the paid month, but only moves
    forward: a late payment for an earlier month leaves it unchanged.
    """
    taxi = await get_scoped_taxi(db, ctx, body.taxi_id)
    covers = datetime.date(body.year, body.month, 1)

    payment = Payment(
        taxi_id=taxi.id,
        rank_id=taxi.rank_id,
        registration=taxi.registration,
        amount=Decimal(str(body.amount)),
        month=body.month,
        year=body.year,
        payment_type=body.payment_type,
        notes=body.notes,
        recorded_by=ctx.email,
    )
    db.add(payment)
    await db.execute(
        update(Taxi)
        .where(
            Taxi.id == taxi.id,
            or_(Taxi.membership_paid_until.is_(None), Taxi.membership_paid_until < covers),
        )
        .values(membership_paid_until=covers)
        .execution_options(synchronize_session=False)
    )
    await write_activity_log(
        db,
        ctx,
        "payment_recorded",
        target_type="taxi",
        target_id=str(taxi.id),
        details={
            "registration": taxi.registration,
            "amount": body.amount,
            "month": body.month,
            "year": body.year,
        },
    )
    await commit_or_fail(db, "record payment")
    await db.refresh(taxi, ["membership_paid_until"])

    return {
        **payment_to_dict(payment),
        "membership_paid_until": taxi.membership_paid_until.isoformat(),
    }


@router.get("")
async def list_payments(
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_db),
    ctx: SessionContext = Depends(require_permission(Action.VIEW)),
):
    """Payments for a month (default: the current one) with revenue totals."""
    now = datetime.datetime.now(datetime.timezone.utc)
    month = month or now.month
    year = year or now.year

    stmt = (
        ctx.scoped_query("payments")
        .where(Payment.month == month, Payment.year == year)
        .order_by(Payment.recorded_at.desc())
    )
    payments = (await db.execute(stmt)).scalars().all()

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today_stmt = ctx.apply_scope(
        select(func.count(Payment.id)).where(Payment.recorded_at >= midnight),
        "payments",
    )
    payments_today = (await db.execute(today_stmt)).scalar_one()

    items = [payment_to_dict(p) for p in payments]
    return {
        "items": items,
        "total": len(items),
        "month": month,
        "year": year,
        "total_revenue": round(sum(float(p.amount) for p in payments), 2),
        "payments_today": payments_today,
    }
