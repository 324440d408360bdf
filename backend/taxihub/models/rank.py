"""Taxi rank models: ranks, their aisles and their fare lists."""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taxihub.database import Base
from taxihub.models.base import UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from taxihub.models.marshal import MarshalProfile


class TaxiRank(UUIDPrimaryKeyMixin, Base):
    """A physical taxi-queue location."""
    __tablename__ = "taxi_ranks"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(100))
    province: Mapped[str | None] = mapped_column(String(100))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    capacity: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    opening_time: Mapped[str | None] = mapped_column(String(5))
    closing_time: Mapped[str | None] = mapped_column(String(5))
    facilities: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(String(200))
    updated_by: Mapped[str | None] = mapped_column(String(200))
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # ------ relationships ------
    aisles: Mapped[list[Aisle]] = relationship(
        "Aisle",
        back_populates="rank",
        cascade="all, delete-orphan",
        order_by="Aisle.position",
        lazy="selectin",
    )
    fares: Mapped[list[Fare]] = relationship(
        "Fare",
        back_populates="rank",
        cascade="all, delete-orphan",
        order_by="Fare.position",
        lazy="selectin",
    )
    assigned_marshals: Mapped[list[MarshalProfile]] = relationship(
        "MarshalProfile",
        back_populates="rank",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<TaxiRank {self.name!r}>"


class Aisle(UUIDPrimaryKeyMixin, Base):
    """A numbered lane inside a rank, serving a list of routes."""
    __tablename__ = "rank_aisles"

    rank_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("taxi_ranks.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    aisle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    routes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    rank: Mapped[TaxiRank] = relationship("TaxiRank", back_populates="aisles")

    def __repr__(self) -> str:
        return f"<Aisle {self.aisle_number} {self.name!r}>"


class Fare(UUIDPrimaryKeyMixin, Base):
    """A route and its price at a rank."""
    __tablename__ = "rank_fares"

    rank_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("taxi_ranks.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    route: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    rank: Mapped[TaxiRank] = relationship("TaxiRank", back_populates="fares")

    def __repr__(self) -> str:
        return f"<Fare {self.route!r} {self.price}>"
