"""Principal model: the authenticated identity behind a marshal profile."""
from __future__ import annotations

import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taxihub.database import Base
from taxihub.models.base import UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from taxihub.models.marshal import MarshalProfile


class Principal(UUIDPrimaryKeyMixin, Base):
    """Email/password credentials.

    ``session_version`` is embedded in every issued token; bumping it signs
    the principal out everywhere.
    """
    __tablename__ = "principals"

    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    session_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # ------ relationships ------
    profile: Mapped[MarshalProfile | None] = relationship(
        "MarshalProfile",
        back_populates="principal",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Principal {self.email!r}>"
