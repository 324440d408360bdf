"""Taxi model."""
from __future__ import annotations

import datetime
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taxihub.database import Base
from taxihub.models.base import UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from taxihub.models.rank import TaxiRank


class Taxi(UUIDPrimaryKeyMixin, Base):
    """A minibus taxi working from a rank.

    ``total_loads`` and ``membership_paid_until`` are projections of the
    load and payment events, maintained in the same transaction as the
    event insert.
    """
    __tablename__ = "taxis"

    registration: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    driver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    driver_phone: Mapped[str | None] = mapped_column(String(30))
    rank_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("taxi_ranks.id", ondelete="SET NULL"),
    )
    aisle_name: Mapped[str | None] = mapped_column(String(100))
    membership_paid_until: Mapped[datetime.date | None] = mapped_column(Date)
    total_loads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_load_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[str | None] = mapped_column(String(200))
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # ------ relationships ------
    rank: Mapped[TaxiRank | None] = relationship("TaxiRank", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Taxi {self.registration!r}>"
