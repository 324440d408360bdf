"""Activity log model: immutable audit trail of user and admin actions."""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import JSON, Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from taxihub.database import Base
from taxihub.models.base import UUIDPrimaryKeyMixin, utcnow


class ActivityLog(UUIDPrimaryKeyMixin, Base):
    """Immutable audit record written alongside the action it describes."""
    __tablename__ = "activity_logs"

    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    actor_email: Mapped[str | None] = mapped_column(String(200))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    target_type: Mapped[str | None] = mapped_column(String(100))
    target_id: Mapped[str | None] = mapped_column(String(200))
    details: Mapped[dict | None] = mapped_column(JSON)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action!r} by {self.actor_email!r}>"
