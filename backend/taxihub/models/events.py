"""Append-only operational events: loads, payments and meetings."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from taxihub.database import Base
from taxihub.models.base import UUIDPrimaryKeyMixin, utcnow


class Load(UUIDPrimaryKeyMixin, Base):
    """One departure of a loaded taxi, as recorded by a marshal."""
    __tablename__ = "loads"

    taxi_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("taxis.id", ondelete="SET NULL")
    )
    rank_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("taxi_ranks.id", ondelete="SET NULL")
    )
    registration: Mapped[str] = mapped_column(String(20), nullable=False)
    driver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    marshal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    marshal_email: Mapped[str] = mapped_column(String(200), nullable=False)
    recorded_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Load {self.registration!r} at {self.recorded_at}>"


class Payment(UUIDPrimaryKeyMixin, Base):
    """A membership payment covering one month for one taxi."""
    __tablename__ = "payments"

    taxi_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("taxis.id", ondelete="SET NULL")
    )
    rank_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("taxi_ranks.id", ondelete="SET NULL")
    )
    registration: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[str] = mapped_column(String(200), nullable=False)
    recorded_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Payment {self.registration!r} {self.amount} {self.year}-{self.month:02d}>"


class Meeting(UUIDPrimaryKeyMixin, Base):
    """A scheduled rank meeting."""
    __tablename__ = "meetings"

    rank_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("taxi_ranks.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    meeting_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    agenda: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Meeting {self.title!r}>"
