import json

import pytest

from jobdispatch.store import JOBS_HASH, MemoryJobStore, RedisJobStore, get_job_store


@pytest.mark.asyncio
async def test_memory_store_save_load_delete():
    store = MemoryJobStore()
    await store.save({"job_id": "a", "state": "ready"})
    await store.save({"job_id": "a", "state": "running"})
    await store.save({"job_id": "b", "state": "scheduled"})

    records = sorted(await store.load_all(), key=lambda r: r["job_id"])
    assert records == [{"job_id": "a", "state": "running"}, {"job_id": "b", "state": "scheduled"}]

    await store.delete("a")
    await store.delete("missing")
    assert [r["job_id"] for r in await store.load_all()] == ["b"]


@pytest.mark.asyncio
async def test_redis_store_uses_one_hash(fake_redis):
    store = RedisJobStore(fake_redis)
    await store.save({"job_id": "a", "state": "ready"})

    raw = await fake_redis.hget(JOBS_HASH, "a")
    assert json.loads(raw) == {"job_id": "a", "state": "ready"}
    assert await store.load_all() == [{"job_id": "a", "state": "ready"}]

    await store.delete("a")
    assert await store.load_all() == []
    await store.close()
    assert fake_redis.closed


@pytest.mark.asyncio
async def test_redis_store_custom_key(fake_redis):
    store = RedisJobStore(fake_redis, key="other-jobs")
    await store.save({"job_id": "a"})
    assert await fake_redis.hgetall(JOBS_HASH) == {}
    assert list(await fake_redis.hgetall("other-jobs")) == ["a"]


def test_get_job_store():
    assert isinstance(get_job_store("memory"), MemoryJobStore)
    assert isinstance(get_job_store("REDIS"), RedisJobStore)
    with pytest.raises(ValueError):
        get_job_store("sqlite")
