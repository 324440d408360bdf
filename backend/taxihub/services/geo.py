"""Distance, search and ordering helpers for the public rank directory.

All helpers work on serialised rank dicts (as returned by the directory
routes), which carry ``location: {"lat": ..., "lng": ...}`` or ``None``.
"""
from __future__ import annotations

import math
from typing import Any

EARTH_RADIUS_KM = 6371.0

SORT_MODES = ("distance", "name", "recent")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_to(rank: dict[str, Any], user_location: tuple[float, float] | None) -> float | None:
    """Distance from the user to a rank, or ``None`` if either side has no
    coordinates."""
    location = rank.get("location")
    if user_location is None or not location:
        return None
    if location.get("lat") is None or location.get("lng") is None:
        return None
    return haversine_km(user_location[0], user_location[1], location["lat"], location["lng"])


def matches_search(rank: dict[str, Any], term: str) -> bool:
    """Case-insensitive match on name, address, aisle routes and fare routes."""
    needle = term.strip().lower()
    if not needle:
        return True
    haystack = [rank.get("name") or "", rank.get("address") or ""]
    for aisle in rank.get("aisles") or []:
        haystack.extend(aisle.get("routes") or [])
    for fare in rank.get("fares") or []:
        haystack.append(fare.get("route") or "")
    return any(needle in value.lower() for value in haystack)


def sort_ranks(
    ranks: list[dict[str, Any]],
    sort: str = "distance",
    user_location: tuple[float, float] | None = None,
) -> list[dict[str, Any]]:
    """Return a sorted copy of ``ranks``.

    Distance sorting needs a user location; without one the input order is
    kept.  Ranks without coordinates sort after every located rank.
    """
    ordered = list(ranks)
    if sort == "distance" and user_location is not None:
        def _key(rank: dict[str, Any]) -> tuple[int, float]:
            dist = distance_to(rank, user_location)
            return (1, 0.0) if dist is None else (0, dist)
        ordered.sort(key=_key)
    elif sort == "name":
        ordered.sort(key=lambda r: (r.get("name") or "").lower())
    elif sort == "recent":
        ordered.sort(key=lambda r: r.get("created_at") or "", reverse=True)
    return ordered


def show_nearby_ranks(
    ranks: list[dict[str, Any]],
    user_location: tuple[float, float],
    threshold_km: float = 10.0,
    sort: str = "distance",
) -> list[dict[str, Any]]:
    """Ranks within ``threshold_km`` of the user, sorted by ``sort``.

    Ranks without coordinates are never "nearby".
    """
    nearby = []
    for rank in ranks:
        dist = distance_to(rank, user_location)
        if dist is not None and dist <= threshold_km:
            nearby.append(rank)
    return sort_ranks(nearby, sort=sort, user_location=user_location)
