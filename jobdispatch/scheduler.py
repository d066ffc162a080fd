import weakref
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from . import config
from . import metrics
from .dispatcher import Dispatcher
from .durations import due_after, to_instant
from .errors import NotFoundError, PayloadFailure
from .models import Job, JobState, Payload, utcnow
from .outcomes import JobRecord, OutcomeTracker
from .ready_queue import ReadyQueue
from .store import JobStore
from .timewheel import TimeWheel
from .worker import WorkerPool

logger = structlog.get_logger(__name__)

PayloadResolver = Callable[[JobRecord], Optional[Payload]]


class JobScheduler:
    """Submission API over the delay index, ready queue and worker pool.

    Usage:
        scheduler = JobScheduler(workers=4)
        await scheduler.start()

        job_id = await scheduler.enqueue(send_report)
        later_id = await scheduler.schedule_in(send_report, "PT3H")
        record = await scheduler.wait_for(job_id)

        await scheduler.stop()

    All methods must be called from the event loop the scheduler was started
    on. Submissions never wait for a free worker.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        poll_ceiling: Optional[float] = None,
        retention: Optional[float] = None,
        store: Optional[JobStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clock = clock
        self.store = store
        self.wheel = TimeWheel()
        self.ready = ReadyQueue()
        retention = config.RETENTION_SECONDS if retention is None else retention
        self.outcomes = OutcomeTracker(store, retention=timedelta(seconds=retention))
        self.dispatcher = Dispatcher(self.wheel, self.ready, self.outcomes, poll_ceiling=poll_ceiling, clock=clock)
        self.pool = WorkerPool(self.ready, self.outcomes, size=workers)
        # Jobs not yet finished; entries vanish once nothing else holds the job.
        self._jobs: "weakref.WeakValueDictionary[str, Job]" = weakref.WeakValueDictionary()

    @property
    def is_running(self) -> bool:
        return self.dispatcher.is_running and self.pool.is_running

    async def start(self) -> None:
        self.dispatcher.start()
        self.pool.start()
        logger.info("scheduler_started", workers=self.pool.size, poll_ceiling=self.dispatcher.poll_ceiling)

    async def stop(self, drain_timeout: Optional[float] = None) -> None:
        await self.dispatcher.stop()
        await self.pool.stop(drain_timeout)
        logger.info("scheduler_stopped", scheduled=len(self.wheel), ready=len(self.ready))

    async def __aenter__(self) -> "JobScheduler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def enqueue(self, payload: Payload, *, name: Optional[str] = None, idempotency_key: Optional[str] = None) -> str:
        existing = self._reusable(idempotency_key)
        if existing is not None:
            return existing
        job = Job(payload, created_at=self.clock(), name=name, state=JobState.READY)
        return await self._submit(job, idempotency_key)

    async def schedule(
        self,
        payload: Payload,
        at: Union[str, datetime],
        *,
        name: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Run ``payload`` no earlier than ``at``.

        Instants at or before now are treated exactly like :meth:`enqueue`.
        """
        due_at = to_instant(at)
        existing = self._reusable(idempotency_key)
        if existing is not None:
            return existing
        now = self.clock()
        if due_at <= now:
            job = Job(payload, created_at=now, name=name, state=JobState.READY)
        else:
            job = Job(payload, created_at=now, due_at=due_at, name=name, state=JobState.SCHEDULED)
        return await self._submit(job, idempotency_key)

    async def schedule_in(
        self,
        payload: Payload,
        delay: Union[str, timedelta],
        *,
        name: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Run ``payload`` after ``delay`` (a timedelta or ISO-8601 duration like ``PT3H``).

        The delay is turned into an absolute instant here, once.
        """
        due_at = due_after(delay, self.clock())
        return await self.schedule(payload, due_at, name=name, idempotency_key=idempotency_key)

    def _reusable(self, idempotency_key: Optional[str]) -> Optional[str]:
        rec = self.outcomes.find_reusable(idempotency_key)
        if rec is None:
            return None
        logger.info("job_resubmission_ignored", job_id=rec.job_id, idempotency_key=idempotency_key, state=rec.state.value)
        return rec.job_id

    async def _submit(self, job: Job, idempotency_key: Optional[str] = None) -> str:
        self._jobs[job.id] = job
        if job.state == JobState.SCHEDULED:
            self.wheel.insert(job)
            metrics.jobs_scheduled_total.inc()
            metrics.scheduled_jobs.set(len(self.wheel))
        else:
            self.ready.put(job)
            metrics.jobs_enqueued_total.inc()
            metrics.ready_queue_depth.set(len(self.ready))
        metrics.jobs_submitted_total.inc()
        self.dispatcher.notify()
        logger.info("job_submitted", job_id=job.id, name=job.name, state=job.state.value, due_at=job.due_at.isoformat())
        await self.outcomes.register(job, idempotency_key)
        return job.id

    # ------------------------------------------------------------------
    # Cancellation and queries
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str) -> JobState:
        """Cancel a job that no worker has claimed yet.

        Cancelling a running or finished job, or cancelling twice, changes
        nothing and returns the current state.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return self.outcomes.get(job_id).state
        if not job.can_advance(JobState.CANCELLED):
            return job.state
        job.advance(JobState.CANCELLED)
        self.wheel.discard(job_id)
        self.ready.discard(job_id)
        metrics.jobs_cancelled_total.inc()
        metrics.scheduled_jobs.set(len(self.wheel))
        metrics.ready_queue_depth.set(len(self.ready))
        logger.info("job_cancelled", job_id=job_id, name=job.name)
        await self.outcomes.update(job, finished_at=self.clock())
        return job.state

    def get_state(self, job_id: str) -> JobState:
        return self.outcomes.get(job_id).state

    def get_record(self, job_id: str) -> JobRecord:
        return self.outcomes.get(job_id)

    def list_records(self) -> List[JobRecord]:
        return self.outcomes.all()

    async def wait_for(self, job_id: str, timeout: Optional[float] = None) -> JobRecord:
        return await self.outcomes.wait_for(job_id, timeout)

    async def forget(self, job_id: str) -> JobRecord:
        return await self.outcomes.forget(job_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "scheduled": len(self.wheel),
            "ready": len(self.ready),
            "running": self.pool.busy,
            "workers": self.pool.size,
            "tracked": len(self.outcomes),
        }

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def restore(self, resolver: PayloadResolver) -> List[str]:
        """Reload job records from the checkpoint store.

        Finished records come back for queries only. Scheduled and ready jobs
        are resubmitted under their original id and due instant when
        ``resolver`` can rebuild their payload. Jobs caught running are marked
        failed: a payload is never started twice.
        """
        if self.store is None:
            return []
        resubmitted = []
        now = self.clock()
        for data in await self.store.load_all():
            rec = JobRecord.from_dict(data)
            if rec.job_id in self.outcomes:
                continue
            if rec.state.is_terminal:
                await self.outcomes.track(rec)
                continue
            if rec.state == JobState.RUNNING:
                await self._fail_restored(rec, "interrupted while running", now)
                continue
            payload = resolver(rec)
            if payload is None:
                await self._fail_restored(rec, "payload could not be resolved", now)
                continue
            state = JobState.SCHEDULED if rec.due_at > now else JobState.READY
            job = Job(payload, created_at=rec.created_at, due_at=rec.due_at, name=rec.name, id=rec.job_id, state=state)
            await self._submit(job, rec.idempotency_key)
            resubmitted.append(job.id)
        logger.info("jobs_restored", resubmitted=len(resubmitted), tracked=len(self.outcomes))
        return resubmitted

    async def _fail_restored(self, rec: JobRecord, reason: str, now: datetime) -> None:
        logger.warning("restored_job_failed", job_id=rec.job_id, previous_state=rec.state.value, reason=reason)
        failure = PayloadFailure(rec.job_id, message=reason)
        await self.outcomes.track(replace(rec, state=JobState.FAILED, finished_at=now, failure=failure))
