"""
Persistence for per-key rate-limit snapshots.

A record is keyed by (provider, model, key_name, limit_type). Writes are
upserts so concurrent reporters simply overwrite each other; a record stops
counting as limited once its reset timestamp has passed, and expired rows are
left in place until the next upsert for the same key replaces them.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

LimitType = Literal["rpm", "rph", "rpd", "tpm", "tph", "tpd"]
LimitStatus = Literal["ok", "limited"]


@dataclass
class RateLimitRecord:
    provider: str
    model: str
    key_name: str
    limit_type: LimitType
    remaining: int
    reset_at: float  # unix seconds
    status: LimitStatus = "limited"
    last_seen_at: float = 0.0

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return (self.provider, self.model, self.key_name, self.limit_type)


class RateLimitStore(ABC):
    """Shared view of which keys are currently rate limited."""

    @abstractmethod
    async def limited_key_names(self, provider: str, model: str, now: float) -> set[str]:
        """Names of keys with a limited record whose reset time is after `now`."""

    @abstractmethod
    async def upsert(self, record: RateLimitRecord) -> None:
        pass


class MemoryRateLimitStore(RateLimitStore):
    def __init__(self):
        self._records: dict[tuple[str, str, str, str], RateLimitRecord] = {}

    async def limited_key_names(self, provider: str, model: str, now: float) -> set[str]:
        return {
            r.key_name
            for r in self._records.values()
            if r.provider == provider
            and r.model == model
            and r.status == "limited"
            and r.reset_at > now
        }

    async def upsert(self, record: RateLimitRecord) -> None:
        self._records[record.identity] = record

    def records(self) -> list[RateLimitRecord]:
        return list(self._records.values())


class SQLiteRateLimitStore(RateLimitStore):
    """Durable store backed by a single SQLite table.

    sqlite3 is blocking, so every query runs in a worker thread to keep the
    event loop free.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info("Rate limit store initialized: %s", self.db_path)

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_database(self):
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_key_limits (
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    key_name TEXT NOT NULL,
                    limit_type TEXT NOT NULL,
                    remaining INTEGER NOT NULL,
                    reset_at REAL NOT NULL,
                    status TEXT NOT NULL DEFAULT 'limited',
                    last_seen_at REAL NOT NULL,
                    PRIMARY KEY (provider, model, key_name, limit_type)
                )
            """)

    def _select_limited(self, provider: str, model: str, now: float) -> set[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT key_name FROM api_key_limits
                WHERE provider = ? AND model = ? AND status = 'limited' AND reset_at > ?
                """,
                (provider, model, now),
            ).fetchall()
        return {row[0] for row in rows}

    def _upsert(self, record: RateLimitRecord) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO api_key_limits
                    (provider, model, key_name, limit_type, remaining, reset_at, status, last_seen_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (provider, model, key_name, limit_type) DO UPDATE SET
                    remaining = excluded.remaining,
                    reset_at = excluded.reset_at,
                    status = excluded.status,
                    last_seen_at = excluded.last_seen_at
                """,
                (
                    record.provider,
                    record.model,
                    record.key_name,
                    record.limit_type,
                    record.remaining,
                    record.reset_at,
                    record.status,
                    record.last_seen_at,
                ),
            )

    async def limited_key_names(self, provider: str, model: str, now: float) -> set[str]:
        return await asyncio.to_thread(self._select_limited, provider, model, now)

    async def upsert(self, record: RateLimitRecord) -> None:
        await asyncio.to_thread(self._upsert, record)


def create_limit_store(db_path: str | None = None) -> RateLimitStore:
    if db_path:
        return SQLiteRateLimitStore(db_path)
    return MemoryRateLimitStore()
