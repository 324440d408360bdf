"""Local offline cache for the public directory.

A small SQLite key-value file that mirrors the last good copy of the rank
directory, the last search term and per-rank queue snapshots.  Directory
routes write through on every successful database read and read from here
when the database is unreachable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from taxihub.config import settings

logger = logging.getLogger(__name__)

TAXI_RANKS_KEY = "taxi_ranks"
LAST_SEARCH_KEY = "last_search"
QUEUE_DATA_KEY = "queue_data"


class OfflineCache:
    """Key-value store over a single SQLite table.  Values are JSON."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._init_sqlite()
        except sqlite3.Error:
            logger.warning(f"Offline cache at {self.path} could not be initialised", exc_info=True)

    # ---- SQLite setup ----

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path))

    def _init_sqlite(self) -> None:
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key         TEXT PRIMARY KEY,
                    value       TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # ---- Generic access ----

    def set_item(self, key: str, value: Any) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """INSERT INTO cache_entries (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, json.dumps(value, default=str), datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_item(self, key: str) -> Any | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return json.loads(row[0]) if row else None

    def clear_all(self) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM cache_entries")
            conn.commit()
        finally:
            conn.close()

    # ---- Directory data ----

    def save_taxi_ranks(self, ranks: list[dict[str, Any]]) -> None:
        self.set_item(TAXI_RANKS_KEY, ranks)

    def get_taxi_ranks(self) -> list[dict[str, Any]] | None:
        return self.get_item(TAXI_RANKS_KEY)

    def save_last_search(self, search: str) -> None:
        self.set_item(LAST_SEARCH_KEY, search)

    def get_last_search(self) -> str | None:
        return self.get_item(LAST_SEARCH_KEY)

    def save_queue_data(self, rank_id: str, data: dict[str, Any]) -> None:
        queues = self.get_item(QUEUE_DATA_KEY) or {}
        queues[rank_id] = data
        self.set_item(QUEUE_DATA_KEY, queues)

    def get_queue_data(self, rank_id: str) -> dict[str, Any] | None:
        queues = self.get_item(QUEUE_DATA_KEY) or {}
        return queues.get(rank_id)

    # ---- Async (off the event loop, failures logged only) ----

    async def _run_safe(self, func, *args) -> Any | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except sqlite3.Error:
            logger.warning(f"Offline cache {func.__name__} failed at {self.path}", exc_info=True)
            return None

    async def save_taxi_ranks_async(self, ranks: list[dict[str, Any]]) -> None:
        await self._run_safe(self.save_taxi_ranks, ranks)

    async def get_taxi_ranks_async(self) -> list[dict[str, Any]] | None:
        return await self._run_safe(self.get_taxi_ranks)

    async def save_last_search_async(self, search: str) -> None:
        await self._run_safe(self.save_last_search, search)

    async def get_last_search_async(self) -> str | None:
        return await self._run_safe(self.get_last_search)

    async def save_queue_data_async(self, rank_id: str, data: dict[str, Any]) -> None:
        await self._run_safe(self.save_queue_data, rank_id, data)

    async def get_queue_data_async(self, rank_id: str) -> dict[str, Any] | None:
        return await self._run_safe(self.get_queue_data, rank_id)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_cache: OfflineCache | None = None


def get_offline_cache() -> OfflineCache:
    global _cache
    if _cache is None:
        _cache = OfflineCache(settings.OFFLINE_CACHE_PATH)
    return _cache
