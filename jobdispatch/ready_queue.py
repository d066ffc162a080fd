import asyncio
from typing import Dict, Optional

from .models import Job


class ReadyQueue:
    """FIFO of jobs that may run now.

    Producers (submitters and the dispatcher) call :meth:`put`; workers await
    :meth:`get`. Discarded jobs are skipped on the way out.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Job]" = asyncio.Queue()
        self._live: Dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._live

    def put(self, job: Job) -> None:
        if job.id in self._live:
            raise ValueError(f"job {job.id} is already queued")
        self._live[job.id] = job
        self._queue.put_nowait(job)

    def discard(self, job_id: str) -> bool:
        return self._live.pop(job_id, None) is not None

    def get_nowait(self) -> Optional[Job]:
        while not self._queue.empty():
            job = self._queue.get_nowait()
            if self._live.get(job.id) is job:
                del self._live[job.id]
                return job
        return None

    async def get(self) -> Job:
        while True:
            job = await self._queue.get()
            if self._live.get(job.id) is job:
                del self._live[job.id]
                return job
