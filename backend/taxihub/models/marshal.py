"""Marshal profile model: role, rank assignment and approval status."""
from __future__ import annotations

import datetime
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taxihub.database import Base
from taxihub.models.base import utcnow

if TYPE_CHECKING:
    from taxihub.models.principal import Principal
    from taxihub.models.rank import TaxiRank


class MarshalProfile(Base):
    """Application profile of a principal (one per principal, same id)."""
    __tablename__ = "marshalls"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("principals.id", ondelete="CASCADE"),
        primary_key=True,
    )
    email: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    role: Mapped[str | None] = mapped_column(String(20))
    rank_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("taxi_ranks.id", ondelete="SET NULL"),
    )
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(200))
    suspended_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    suspended_by: Mapped[str | None] = mapped_column(String(200))
    last_login: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True))
    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # ------ relationships ------
    principal: Mapped[Principal] = relationship(
        "Principal",
        back_populates="profile",
    )
    rank: Mapped[TaxiRank | None] = relationship(
        "TaxiRank",
        back_populates="assigned_marshals",
        lazy="selectin",
    )

    @property
    def rank_name(self) -> str | None:
        return self.rank.name if self.rank is not None else None

    def __repr__(self) -> str:
        return f"<MarshalProfile {self.email!r} role={self.role!r}>"
