import asyncio
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog

from . import metrics
from .errors import NotFoundError, PayloadFailure
from .models import Job, JobState, utcnow
from .store import JobStore

logger = structlog.get_logger(__name__)

_TIMESTAMPS = ("created_at", "due_at", "ready_at", "started_at", "finished_at")


@dataclass
class JobRecord:
    job_id: str
    state: JobState
    created_at: datetime
    due_at: datetime
    name: Optional[str] = None
    idempotency_key: Optional[str] = None
    ready_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure: Optional[PayloadFailure] = field(default=None, compare=False)

    @classmethod
    def for_job(cls, job: Job, idempotency_key: Optional[str] = None) -> "JobRecord":
        return cls(
            job_id=job.id,
            state=job.state,
            created_at=job.created_at,
            due_at=job.due_at,
            name=job.name,
            idempotency_key=idempotency_key,
            ready_at=utcnow() if job.state == JobState.READY else None,
        )

    @property
    def error(self) -> Optional[str]:
        return str(self.failure) if self.failure is not None else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "failure":
                continue
            if f.name == "state":
                value = value.value
            elif f.name in _TIMESTAMPS and value is not None:
                value = value.isoformat()
            data[f.name] = value
        data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        kwargs = {f.name: data.get(f.name) for f in fields(cls) if f.name != "failure"}
        kwargs["state"] = JobState(kwargs["state"])
        for name in _TIMESTAMPS:
            if kwargs.get(name):
                kwargs[name] = datetime.fromisoformat(kwargs[name])
        record = cls(**kwargs)
        if data.get("error"):
            record.failure = PayloadFailure(record.job_id, message=data["error"])
        return record


class OutcomeTracker:
    """Per-job records of state, timing and failure.

    Terminal records are kept for ``retention`` after they finish, or until the
    caller forgets them. Every change is checkpointed to the store.
    """

    def __init__(self, store: Optional[JobStore] = None, retention: timedelta = timedelta(hours=1)):
        self.store = store
        self.retention = retention
        self._records: Dict[str, JobRecord] = {}
        self._by_key: Dict[str, str] = {}
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        # per-job checkpoint bookkeeping, only while writes are in flight
        self._versions: Dict[str, int] = {}
        self._saved: Dict[str, int] = {}
        self._latest: Dict[str, JobRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._records

    def evict_expired(self, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        cutoff = now - self.retention
        expired = [
            job_id
            for job_id, rec in self._records.items()
            if rec.state.is_terminal and rec.finished_at is not None and rec.finished_at <= cutoff
        ]
        for job_id in expired:
            self._drop(job_id)
        if expired:
            logger.debug("records_evicted", count=len(expired))
        return expired

    def _drop(self, job_id: str) -> Optional[JobRecord]:
        rec = self._records.pop(job_id, None)
        if rec is not None and rec.idempotency_key and self._by_key.get(rec.idempotency_key) == job_id:
            del self._by_key[rec.idempotency_key]
        return rec

    def get(self, job_id: str) -> JobRecord:
        self.evict_expired()
        try:
            return self._records[job_id]
        except KeyError:
            raise NotFoundError(job_id) from None

    def all(self) -> List[JobRecord]:
        self.evict_expired()
        return list(self._records.values())

    def find_reusable(self, idempotency_key: Optional[str]) -> Optional[JobRecord]:
        """Live or succeeded job submitted earlier under the same key."""
        if not idempotency_key:
            return None
        self.evict_expired()
        job_id = self._by_key.get(idempotency_key)
        if job_id is None:
            return None
        rec = self._records[job_id]
        if rec.state in (JobState.FAILED, JobState.CANCELLED):
            return None
        return rec

    async def forget(self, job_id: str) -> JobRecord:
        rec = self.get(job_id)
        if not rec.state.is_terminal:
            raise ValueError(f"job {job_id} is still {rec.state.value}; only finished jobs can be forgotten")
        self._drop(job_id)
        if self.store is None:
            return rec
        lock = self._locks.get(job_id)
        if lock is None:
            await self.store.delete(job_id)
            return rec
        async with lock:
            # saves still queued behind us must not bring the record back
            self._saved[job_id] = self._versions.get(job_id, 0)
            await self.store.delete(job_id)
        if not lock.locked():
            self._forget_writes(job_id)
        return rec

    async def track(self, record: JobRecord) -> JobRecord:
        self._records[record.job_id] = record
        if record.idempotency_key:
            self._by_key[record.idempotency_key] = record.job_id
        self._resolve_waiters(record)
        await self._checkpoint(record)
        return record

    async def register(self, job: Job, idempotency_key: Optional[str] = None) -> JobRecord:
        self.evict_expired()
        return await self.track(JobRecord.for_job(job, idempotency_key))

    async def update(self, job: Job, **changes: Any) -> JobRecord:
        """Copy ``job.state`` (and any extra fields) onto the job's record.

        The in-memory record is updated before the first await, so readers on
        the loop never see it lag behind the job.
        """
        rec = self._records.get(job.id)
        if rec is None:
            rec = JobRecord.for_job(job)
        rec = replace(rec, state=job.state, **changes)
        return await self.track(rec)

    async def wait_for(self, job_id: str, timeout: Optional[float] = None) -> JobRecord:
        rec = self.get(job_id)
        if rec.state.is_terminal:
            return rec
        fut = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, []).append(fut)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            waiters = self._waiters.get(job_id)
            if waiters and fut in waiters:
                waiters.remove(fut)
                if not waiters:
                    del self._waiters[job_id]

    def _resolve_waiters(self, record: JobRecord) -> None:
        if not record.state.is_terminal:
            return
        for fut in self._waiters.pop(record.job_id, []):
            if not fut.done():
                fut.set_result(record)

    async def _checkpoint(self, record: JobRecord) -> None:
        """Write the job's newest record, one write per job at a time.

        Saves queue on a per-job lock; each one writes whatever is newest when
        it gets the lock, and is skipped if a later version already landed.
        """
        if self.store is None:
            return
        job_id = record.job_id
        version = self._versions.get(job_id, 0) + 1
        self._versions[job_id] = version
        self._latest[job_id] = record
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        try:
            async with lock:
                if self._saved.get(job_id, 0) >= version:
                    return
                latest_version, latest = self._versions[job_id], self._latest[job_id]
                try:
                    await self.store.save(latest.to_dict())
                except Exception as exc:
                    metrics.error_count.inc()
                    logger.error("checkpoint_failed", job_id=job_id, state=latest.state.value, error=str(exc))
                    return
                self._saved[job_id] = latest_version
        finally:
            if self._versions.get(job_id) == version and not lock.locked():
                self._forget_writes(job_id)

    def _forget_writes(self, job_id: str) -> None:
        self._versions.pop(job_id, None)
        self._latest.pop(job_id, None)
        self._saved.pop(job_id, None)
        self._locks.pop(job_id, None)
