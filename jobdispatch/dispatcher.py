import asyncio
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from . import config
from . import metrics
from .models import Job, JobState, utcnow
from .outcomes import OutcomeTracker
from .ready_queue import ReadyQueue
from .timewheel import TimeWheel

logger = structlog.get_logger(__name__)


class Dispatcher:
    """Single coordinating loop that promotes due jobs into the ready queue.

    The loop sleeps until the earliest due instant, capped at ``poll_ceiling``
    seconds, and wakes early whenever :meth:`notify` is called.
    """

    def __init__(
        self,
        wheel: TimeWheel,
        ready: ReadyQueue,
        outcomes: OutcomeTracker,
        poll_ceiling: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.wheel = wheel
        self.ready = ready
        self.outcomes = outcomes
        self.poll_ceiling = config.POLL_CEILING_SECONDS if poll_ceiling is None else poll_ceiling
        if self.poll_ceiling <= 0:
            raise ValueError("poll_ceiling must be positive")
        self.clock = clock
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def notify(self) -> None:
        self._wakeup.set()

    def next_timeout(self, now: Optional[datetime] = None) -> float:
        now = now or self.clock()
        earliest = self.wheel.peek_earliest()
        if earliest is None:
            return self.poll_ceiling
        until_due = (earliest[0] - now).total_seconds()
        return max(0.0, min(until_due, self.poll_ceiling))

    async def promote_due(self, now: Optional[datetime] = None) -> List[Job]:
        now = now or self.clock()
        due = self.wheel.pop_if_due(now)
        promoted = []
        # Flip and queue every job first, checkpoint afterwards.
        for job in due:
            if job.state != JobState.SCHEDULED:
                continue
            job.advance(JobState.READY)
            self.ready.put(job)
            promoted.append(job)
        for job in promoted:
            lag = max(0.0, (now - job.due_at).total_seconds())
            metrics.jobs_promoted_total.inc()
            metrics.promotion_lag_seconds.observe(lag)
            logger.debug("job_promoted", job_id=job.id, name=job.name, lag=lag)
            await self.outcomes.update(job, ready_at=now)
        metrics.scheduled_jobs.set(len(self.wheel))
        metrics.ready_queue_depth.set(len(self.ready))
        return promoted

    async def run(self) -> None:
        logger.info("dispatcher_started", poll_ceiling=self.poll_ceiling)
        self._running = True
        try:
            while self._running:
                self._wakeup.clear()
                await self.promote_due()
                timeout = self.next_timeout()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
        except Exception:
            metrics.error_count.inc()
            logger.exception("dispatcher_crashed")
            raise
        finally:
            self._running = False
            logger.info("dispatcher_stopped", pending=len(self.wheel))

    def start(self) -> asyncio.Task:
        if self.is_running:
            raise RuntimeError("dispatcher is already running")
        self._task = asyncio.create_task(self.run(), name="dispatcher")
        return self._task

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
