"""Rank-level data scoping.

Admins read every collection unfiltered.  Every other role is confined to
the rows belonging to the rank on its profile; a profile without a rank sees
nothing (the filter fails closed instead of falling back to an unfiltered
query).

Each collection names the column that carries its rank reference.  A
collection mapped to ``None`` has no rank dimension and is readable by
global-scope roles only.
"""
from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, false, select

from taxihub.models import ActivityLog, Load, MarshalProfile, Meeting, Payment, Taxi, TaxiRank
from taxihub.rbac import is_global_scope

SCOPED_COLLECTIONS: dict[str, tuple[type, Any]] = {
    "marshalls": (MarshalProfile, MarshalProfile.rank_id),
    "taxiRanks": (TaxiRank, TaxiRank.id),
    "taxis": (Taxi, Taxi.rank_id),
    "loads": (Load, Load.rank_id),
    "payments": (Payment, Payment.rank_id),
    "meetings": (Meeting, Meeting.rank_id),
    "activityLogs": (ActivityLog, None),
}


def get_rank_scope(profile: Any) -> uuid.UUID | None:
    """Return the rank id to filter by, or ``None`` for global access.

    Callers must combine this with ``is_global_scope``: ``None`` for a
    rank-scoped role means "no rank assigned", not "everything".
    """
    if profile is None or is_global_scope(profile.role):
        return None
    return profile.rank_id


def apply_rank_scope(stmt: Select, collection_name: str, profile: Any) -> Select:
    """Restrict an existing ``select()`` over ``collection_name`` to what
    ``profile`` may read."""
    _model, rank_column = SCOPED_COLLECTIONS[collection_name]

    if profile is not None and is_global_scope(profile.role):
        return stmt
    if profile is None or rank_column is None or profile.rank_id is None:
        return stmt.where(false())
    return stmt.where(rank_column == profile.rank_id)


def build_scoped_query(collection_name: str, profile: Any) -> Select:
    """Build the read query for ``collection_name`` as seen by ``profile``.

    Raises ``KeyError`` for an unknown collection name.
    """
    model, _rank_column = SCOPED_COLLECTIONS[collection_name]
    return apply_rank_scope(select(model), collection_name, profile)
