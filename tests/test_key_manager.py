import random
from unittest.mock import AsyncMock

import pytest

from jurnalgpt.key_manager import KeyManager, NoKeysConfiguredError
from jurnalgpt.limit_store import MemoryRateLimitStore, RateLimitRecord, SQLiteRateLimitStore

NOW = 1_700_000_000.0


def _manager(store, keys=("k1", "k2", "k3"), clock=lambda: NOW, seed=0):
    return KeyManager({"groq": list(keys)}, store, clock=clock, rng=random.Random(seed))


@pytest.mark.asyncio
async def test_key_names_follow_pool_position():
    manager = _manager(MemoryRateLimitStore())
    assert manager.key_names("groq") == ["GROQ_KEY_1", "GROQ_KEY_2", "GROQ_KEY_3"]

    key = await manager.acquire("groq", "model")
    assert (key.key, key.name) in {("k1", "GROQ_KEY_1"), ("k2", "GROQ_KEY_2"), ("k3", "GROQ_KEY_3")}


@pytest.mark.asyncio
async def test_limited_keys_are_skipped():
    store = MemoryRateLimitStore()
    manager = _manager(store)
    await manager.report_limit("groq", "model", "GROQ_KEY_1", "rpm", 0, 60)
    await manager.report_limit("groq", "model", "GROQ_KEY_3", "tpd", 10, 3600)

    picked = {(await manager.acquire("groq", "model")).name for _ in range(30)}

    assert picked == {"GROQ_KEY_2"}


@pytest.mark.asyncio
async def test_limits_are_scoped_to_model():
    manager = _manager(MemoryRateLimitStore(), keys=("k1",))
    await manager.report_limit("groq", "other-model", "GROQ_KEY_1", "rpm", 0, 60)

    limited = await manager._limited_names("groq", "model")

    assert limited == set()


@pytest.mark.asyncio
async def test_expired_limits_no_longer_count():
    now = [NOW]
    store = MemoryRateLimitStore()
    manager = _manager(store, keys=("k1", "k2"), clock=lambda: now[0])
    await manager.report_limit("groq", "model", "GROQ_KEY_1", "rpm", 0, 60)

    now[0] += 61
    picked = {(await manager.acquire("groq", "model")).name for _ in range(30)}

    assert picked == {"GROQ_KEY_1", "GROQ_KEY_2"}


@pytest.mark.asyncio
async def test_all_limited_still_returns_a_key():
    manager = _manager(MemoryRateLimitStore(), keys=("k1", "k2"))
    await manager.report_limit("groq", "model", "GROQ_KEY_1", "rpm", 0, 60)
    await manager.report_limit("groq", "model", "GROQ_KEY_2", "rpm", 0, 60)

    key = await manager.acquire("groq", "model")

    assert key.name in {"GROQ_KEY_1", "GROQ_KEY_2"}


@pytest.mark.asyncio
async def test_store_errors_degrade_to_full_pool():
    store = MemoryRateLimitStore()
    store.limited_key_names = AsyncMock(side_effect=ConnectionError("down"))
    manager = _manager(store, keys=("k1",))

    key = await manager.acquire("groq", "model")

    assert key.name == "GROQ_KEY_1"
    assert store.limited_key_names.await_count == 2


@pytest.mark.asyncio
async def test_report_limit_swallows_store_errors():
    store = MemoryRateLimitStore()
    store.upsert = AsyncMock(side_effect=ConnectionError("down"))
    manager = _manager(store)

    await manager.report_limit("groq", "model", "GROQ_KEY_1", "rpm", 0, 60)


@pytest.mark.asyncio
async def test_report_limit_upserts_absolute_reset():
    store = MemoryRateLimitStore()
    manager = _manager(store)

    await manager.report_limit("groq", "model", "GROQ_KEY_2", "tpm", 1500, 30)
    await manager.report_limit("groq", "model", "GROQ_KEY_2", "tpm", 800, 12)

    [record] = store.records()
    assert record.remaining == 800
    assert record.reset_at == NOW + 12
    assert record.status == "limited"


@pytest.mark.asyncio
async def test_missing_pool_raises():
    manager = KeyManager({"groq": []}, MemoryRateLimitStore())

    with pytest.raises(NoKeysConfiguredError):
        await manager.acquire("groq", "model")


@pytest.mark.asyncio
async def test_sqlite_store_upsert_and_expiry(tmp_path):
    store = SQLiteRateLimitStore(str(tmp_path / "limits.db"))
    base = RateLimitRecord("groq", "m", "GROQ_KEY_1", "rpm", remaining=0, reset_at=NOW + 60, last_seen_at=NOW)

    await store.upsert(base)
    await store.upsert(RateLimitRecord("groq", "m", "GROQ_KEY_1", "rpm", remaining=1, reset_at=NOW + 5, last_seen_at=NOW))
    await store.upsert(RateLimitRecord("groq", "m", "GROQ_KEY_2", "rpd", remaining=0, reset_at=NOW + 86400, last_seen_at=NOW))

    assert await store.limited_key_names("groq", "m", NOW) == {"GROQ_KEY_1", "GROQ_KEY_2"}
    assert await store.limited_key_names("groq", "m", NOW + 10) == {"GROQ_KEY_2"}
    assert await store.limited_key_names("groq", "other", NOW) == set()
