import os
from typing import Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient

os.environ["JOB_STORE"] = "memory"

from jobdispatch.main import create_app
from jobdispatch.sample import SampleJobService
from jobdispatch.scheduler import JobScheduler


class AsyncInMemoryRedis:
    """Just enough of the redis.asyncio hash API for RedisJobStore."""

    def __init__(self):
        self._hashes: Dict[str, Dict[str, str]] = {}
        self.closed = False

    async def hset(self, name: str, key: str, value: str):
        h = self._hashes.setdefault(name, {})
        added = 0 if key in h else 1
        h[key] = value
        return added

    async def hget(self, name: str, key: str) -> Optional[str]:
        return self._hashes.get(name, {}).get(key)

    async def hgetall(self, name: str) -> Dict[str, str]:
        return dict(self._hashes.get(name, {}))

    async def hdel(self, name: str, *keys: str) -> int:
        h = self._hashes.get(name, {})
        return sum(1 for k in keys if h.pop(k, None) is not None)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return AsyncInMemoryRedis()


@pytest.fixture
def sample_service():
    return SampleJobService(work_seconds=0)


@pytest.fixture
async def scheduler():
    sched = JobScheduler(workers=4, poll_ceiling=0.05)
    await sched.start()
    yield sched
    await sched.stop()


@pytest.fixture
async def api_scheduler():
    sched = JobScheduler(workers=2, poll_ceiling=0.05)
    await sched.start()
    yield sched
    await sched.stop()


@pytest.fixture
async def client(api_scheduler, sample_service):
    # ASGITransport doesn't run the lifespan, so the scheduler is started above.
    app = create_app(scheduler=api_scheduler, sample_service=sample_service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
