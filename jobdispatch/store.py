import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from . import config

# Default hash holding one JSON record per job id
JOBS_HASH = "jobs"


class JobStore:
    """Checkpoint store for job records (plain JSON-able dicts keyed by ``job_id``)."""

    async def save(self, record: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def load_all(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def delete(self, job_id: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class MemoryJobStore(JobStore):
    def __init__(self):
        self._records: Dict[str, str] = {}

    async def save(self, record: Dict[str, Any]) -> None:
        self._records[record["job_id"]] = json.dumps(record)

    async def load_all(self) -> List[Dict[str, Any]]:
        return [json.loads(v) for v in self._records.values()]

    async def delete(self, job_id: str) -> None:
        self._records.pop(job_id, None)


class RedisJobStore(JobStore):
    def __init__(self, client, key: str = JOBS_HASH):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: Optional[str] = None, key: Optional[str] = None) -> "RedisJobStore":
        client = redis.Redis.from_url(url or config.REDIS_URL, decode_responses=True)
        return cls(client, key or config.REDIS_JOBS_KEY)

    async def save(self, record: Dict[str, Any]) -> None:
        await self.client.hset(self.key, record["job_id"], json.dumps(record))

    async def load_all(self) -> List[Dict[str, Any]]:
        all_items = await self.client.hgetall(self.key)
        return [json.loads(v) for v in all_items.values()]

    async def delete(self, job_id: str) -> None:
        await self.client.hdel(self.key, job_id)

    async def close(self) -> None:
        await self.client.aclose()


def get_job_store(kind: Optional[str] = None) -> JobStore:
    kind = (kind or config.JOB_STORE).lower()
    if kind == "memory":
        return MemoryJobStore()
    if kind == "redis":
        return RedisJobStore.from_url()
    raise ValueError(f"unknown JOB_STORE {kind!r}; expected 'memory' or 'redis'")
