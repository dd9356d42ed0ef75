"""
API key rotation for the language-model provider.

Keys are loaded once at startup. Before every call a key is picked at random
from the ones not currently flagged as rate limited in the shared store; if
all of them are flagged, any key is used rather than blocking the caller.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from jurnalgpt.config import Settings
from jurnalgpt.limit_store import LimitType, RateLimitRecord, RateLimitStore, create_limit_store

logger = logging.getLogger(__name__)

STORE_READ_ATTEMPTS = 2


class NoKeysConfiguredError(RuntimeError):
    pass


@dataclass(frozen=True)
class ApiKey:
    key: str
    name: str


class KeyManager:
    def __init__(
        self,
        keys: dict[str, list[str]],
        store: RateLimitStore,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        self._pools = {
            provider: [ApiKey(key=k, name=f"{provider.upper()}_KEY_{i}") for i, k in enumerate(pool, 1)]
            for provider, pool in keys.items()
            if pool
        }
        self._store = store
        self._clock = clock
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyManager":
        return cls(
            keys={"groq": settings.groq_api_keys},
            store=create_limit_store(settings.rate_limit_db_path),
        )

    def key_names(self, provider: str) -> list[str]:
        return [k.name for k in self._pools.get(provider, [])]

    async def _limited_names(self, provider: str, model: str) -> set[str]:
        for attempt in range(1, STORE_READ_ATTEMPTS + 1):
            try:
                return await self._store.limited_key_names(provider, model, self._clock())
            except Exception as exc:
                logger.warning(
                    "Could not read key limits (attempt %s/%s): %s",
                    attempt,
                    STORE_READ_ATTEMPTS,
                    exc,
                )
        logger.warning("Limit store unreachable, treating every %s key as available", provider)
        return set()

    async def acquire(self, provider: str, model: str) -> ApiKey:
        pool = self._pools.get(provider)
        if not pool:
            raise NoKeysConfiguredError(f"No keys found for provider: {provider}")

        limited = await self._limited_names(provider, model)
        candidates = [k for k in pool if k.name not in limited]
        if not candidates:
            logger.warning("All %s keys are flagged as limited, picking one anyway", provider)
            candidates = pool

        return self._rng.choice(candidates)

    async def report_limit(
        self,
        provider: str,
        model: str,
        key_name: str,
        limit_type: LimitType,
        remaining: int,
        reset_in_seconds: float,
    ) -> None:
        now = self._clock()
        record = RateLimitRecord(
            provider=provider,
            model=model,
            key_name=key_name,
            limit_type=limit_type,
            remaining=max(int(remaining), 0),
            reset_at=now + max(reset_in_seconds, 0),
            status="limited",
            last_seen_at=now,
        )
        try:
            await self._store.upsert(record)
        except Exception as exc:
            logger.warning("Could not report limit for %s (%s): %s", key_name, limit_type, exc)
