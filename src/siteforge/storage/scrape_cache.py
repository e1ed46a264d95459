"""
Two-tier cache of extraction results keyed by source URL.

- Memory tier: bounded, insertion-ordered; the oldest inserted entry is
  evicted first. Lost on restart.
- Persistent tier: SQLite via aiosqlite, unbounded, survives restarts.
  A persistent hit is promoted into the memory tier.
- Schema: scrape_cache(key TEXT PRIMARY KEY, url TEXT, timestamp REAL, payload TEXT)

Both tiers share one TTL; expired entries are misses and are removed when
seen.
"""

from __future__ import annotations

import asyncio
import copy
import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import aiosqlite
import structlog

from siteforge.observability import increment
from siteforge.utils import fingerprint

logger = structlog.get_logger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS scrape_cache (
    key TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    timestamp REAL NOT NULL,
    payload TEXT NOT NULL
)
"""

# (url, timestamp, payload)
_Entry = Tuple[str, float, Any]


class ScrapeCache:
    def __init__(
        self,
        db_path: Path | str = Path(".cache/scrapes.db"),
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 500,
        wal_mode: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.db_path = Path(db_path)
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.wal_mode = wal_mode
        self._clock = clock

        self._memory: Dict[str, _Entry] = {}
        self._db: Optional[aiosqlite.Connection] = None
        self._db_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "ScrapeCache":
        return cls(
            config.db_path,
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            wal_mode=config.wal_mode,
            **kwargs,
        )

    @staticmethod
    def key_for(url: str) -> str:
        return fingerprint(url)

    async def initialize(self) -> None:
        await self._ensure_db()

    async def close(self) -> None:
        async with self._db_lock:
            if self._db is not None:
                await self._db.close()
                self._db = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        async with self._db_lock:
            if self._db is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                db = await aiosqlite.connect(self.db_path)
                if self.wal_mode:
                    await db.execute("PRAGMA journal_mode=WAL")
                await db.execute(_CREATE_TABLE)
                await db.commit()
                self._db = db
                logger.debug("Scrape cache database opened", path=str(self.db_path))
            return self._db

    def _is_fresh(self, timestamp: float) -> bool:
        return self._clock() - timestamp < self.ttl_seconds

    def _remember(self, key: str, entry: _Entry) -> None:
        # Re-inserting moves the key to the newest position.
        self._memory.pop(key, None)
        while len(self._memory) >= self.max_entries:
            oldest = next(iter(self._memory))
            del self._memory[oldest]
        self._memory[key] = entry

    async def get(self, url: str) -> Optional[Any]:
        """Cached payload for ``url`` or None. Checks memory first, then SQLite."""
        key = self.key_for(url)

        entry = self._memory.get(key)
        if entry is not None:
            if self._is_fresh(entry[1]):
                increment("scrape_cache_requests", labels={"result": "memory_hit"})
                logger.debug("Cache hit (memory)", url=url, key=key)
                return copy.deepcopy(entry[2])
            del self._memory[key]

        try:
            db = await self._ensure_db()
            async with db.execute(
                "SELECT url, timestamp, payload FROM scrape_cache WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is not None:
                stored_url, timestamp, raw = row
                if self._is_fresh(timestamp):
                    payload = json.loads(raw)
                    self._remember(key, (stored_url, timestamp, payload))
                    increment("scrape_cache_requests", labels={"result": "persistent_hit"})
                    logger.debug("Cache hit (persistent)", url=url, key=key)
                    return copy.deepcopy(payload)
                await db.execute("DELETE FROM scrape_cache WHERE key = ?", (key,))
                await db.commit()
        except (sqlite3.Error, OSError, ValueError) as e:
            logger.warning("Scrape cache read failed", url=url, error=str(e))

        increment("scrape_cache_requests", labels={"result": "miss"})
        return None

    async def set(self, url: str, payload: Any) -> None:
        """Store ``payload`` in both tiers. Persistent-tier failures are logged only."""
        key = self.key_for(url)
        timestamp = self._clock()
        stored = copy.deepcopy(payload)
        self._remember(key, (url, timestamp, stored))

        try:
            raw = json.dumps(stored)
            db = await self._ensure_db()
            await db.execute(
                "INSERT OR REPLACE INTO scrape_cache (key, url, timestamp, payload) VALUES (?, ?, ?, ?)",
                (key, url, timestamp, raw),
            )
            await db.commit()
            logger.debug("Cached scrape data", url=url, key=key)
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.warning("Failed to write scrape cache", url=url, error=str(e))

    async def invalidate(self, url: str) -> None:
        key = self.key_for(url)
        self._memory.pop(key, None)
        try:
            db = await self._ensure_db()
            await db.execute("DELETE FROM scrape_cache WHERE key = ?", (key,))
            await db.commit()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Failed to invalidate scrape cache entry", url=url, error=str(e))

    async def clear(self) -> None:
        self._memory.clear()
        try:
            db = await self._ensure_db()
            await db.execute("DELETE FROM scrape_cache")
            await db.commit()
            logger.info("Scrape cache cleared")
        except (sqlite3.Error, OSError) as e:
            logger.warning("Failed to clear scrape cache", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "memory_entries": len(self._memory),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "db_path": str(self.db_path),
        }
