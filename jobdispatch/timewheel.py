import heapq
import itertools
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .models import Job


class TimeWheel:
    """Delay index: jobs that are not due yet, ordered by due instant.

    Backed by a binary heap of ``(due_at, sequence, job)``. The sequence number
    makes the order total and keeps equal due instants FIFO. Removal is lazy:
    discarded ids stay in the heap until they surface at the top.
    """

    def __init__(self):
        self._heap: List[Tuple[datetime, int, Job]] = []
        self._counter = itertools.count()
        self._live: Dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._live

    def insert(self, job: Job) -> None:
        if job.id in self._live:
            raise ValueError(f"job {job.id} is already in the time wheel")
        heapq.heappush(self._heap, (job.due_at, next(self._counter), job))
        self._live[job.id] = job

    def discard(self, job_id: str) -> bool:
        return self._live.pop(job_id, None) is not None

    def _drop_stale(self) -> None:
        heap = self._heap
        while heap and self._live.get(heap[0][2].id) is not heap[0][2]:
            heapq.heappop(heap)

    def peek_earliest(self) -> Optional[Tuple[datetime, str]]:
        self._drop_stale()
        if not self._heap:
            return None
        due_at, _, job = self._heap[0]
        return due_at, job.id

    def pop_if_due(self, now: datetime) -> List[Job]:
        """Remove and return every job with ``due_at <= now``, earliest first."""
        due: List[Job] = []
        while True:
            self._drop_stale()
            if not self._heap or self._heap[0][0] > now:
                break
            _, _, job = heapq.heappop(self._heap)
            del self._live[job.id]
            due.append(job)
        return due

