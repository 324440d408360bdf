"""Base model utilities for TaxiHub.

Provides a UUID primary-key mixin so every model automatically gets an
``id`` column, and a timezone-aware ``utcnow`` used for column defaults.
The column types are dialect-neutral so the same models run on PostgreSQL
and SQLite.
"""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column named ``id``."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
