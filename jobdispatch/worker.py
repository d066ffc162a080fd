"""Fixed-size pool of async workers that drain the ready queue.

Each worker claims one job at a time, runs its payload, and records the
outcome. Coroutine payloads are awaited on the loop. Plain callables run in
a thread so a blocking payload only ties up its own worker.
"""
import asyncio
import inspect
import time
from typing import Dict, List, Optional

import structlog

from . import config
from . import metrics
from .errors import PayloadFailure
from .models import Job, JobState, utcnow
from .outcomes import OutcomeTracker
from .ready_queue import ReadyQueue

logger = structlog.get_logger(__name__)


async def run_payload(job: Job):
    payload = job.payload
    if inspect.iscoroutinefunction(payload):
        return await payload()
    result = await asyncio.to_thread(payload)
    if inspect.isawaitable(result):
        result = await result
    return result


async def capture_payload(job: Job) -> Optional[BaseException]:
    """Run the payload and hand back whatever it raised, SystemExit and
    CancelledError included, so nothing it does can take the worker down."""
    try:
        await run_payload(job)
    except BaseException as exc:
        return exc
    return None


class WorkerPool:
    def __init__(self, ready: ReadyQueue, outcomes: OutcomeTracker, size: Optional[int] = None):
        self.ready = ready
        self.outcomes = outcomes
        self.size = config.WORKER_COUNT if size is None else size
        if self.size < 1:
            raise ValueError("worker pool size must be at least 1")
        self._tasks: Dict[str, asyncio.Task] = {}
        self._current: Dict[str, Job] = {}
        self._busy = 0
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    @property
    def busy(self) -> int:
        return self._busy

    def claim(self, job: Job) -> bool:
        """Take a dequeued job for execution. False if it was cancelled meanwhile."""
        if not job.can_advance(JobState.RUNNING):
            return False
        job.advance(JobState.RUNNING)
        return True

    async def execute(self, job: Job, worker_name: str = "worker") -> None:
        log = logger.bind(worker=worker_name, job_id=job.id, name=job.name)
        self._busy += 1
        metrics.active_workers.set(self._busy)
        start = time.monotonic()
        try:
            await self.outcomes.update(job, started_at=utcnow())
            log.info("job_started")
            runner = asyncio.create_task(capture_payload(job), name=f"payload-{job.id}")
            try:
                # shield: cancelling the worker must not look like a payload error
                exc = await asyncio.shield(runner)
            except asyncio.CancelledError:
                runner.cancel()
                raise
            if exc is not None:
                failure = PayloadFailure(job.id, exc)
                job.advance(JobState.FAILED)
                metrics.jobs_executed_total.labels(outcome="failed").inc()
                log.warning("job_failed", error=str(failure))
                await self.outcomes.update(job, finished_at=utcnow(), failure=failure)
            else:
                job.advance(JobState.SUCCEEDED)
                metrics.jobs_executed_total.labels(outcome="succeeded").inc()
                log.info("job_succeeded")
                await self.outcomes.update(job, finished_at=utcnow())
        finally:
            self._busy -= 1
            metrics.active_workers.set(self._busy)
            metrics.execution_latency_seconds.observe(time.monotonic() - start)

    async def run_worker(self, worker_name: str) -> None:
        log = logger.bind(worker=worker_name)
        log.debug("worker_started")
        try:
            while not self._stopping:
                job = await self.ready.get()
                metrics.ready_queue_depth.set(len(self.ready))
                if not self.claim(job):
                    continue
                self._current[worker_name] = job
                try:
                    await self.execute(job, worker_name)
                finally:
                    del self._current[worker_name]
        except asyncio.CancelledError:
            log.debug("worker_stopped")
            raise
        except Exception:
            # Payload errors never get here; anything that does is a bug in the pool.
            metrics.error_count.inc()
            log.exception("worker_crashed")
            raise

    def start(self) -> List[asyncio.Task]:
        if self.is_running:
            raise RuntimeError("worker pool is already running")
        self._stopping = False
        self._tasks = {
            f"worker-{i + 1}": asyncio.create_task(self.run_worker(f"worker-{i + 1}"), name=f"worker-{i + 1}")
            for i in range(self.size)
        }
        logger.info("worker_pool_started", size=self.size)
        return list(self._tasks.values())

    async def stop(self, drain_timeout: Optional[float] = None) -> None:
        """Stop the workers.

        Idle workers are cancelled at once. Workers in the middle of a payload
        get ``drain_timeout`` seconds (no limit when None) to finish it, and
        pick up nothing new meanwhile.
        """
        tasks, self._tasks = self._tasks, {}
        if not tasks:
            return
        self._stopping = True
        busy = []
        for name, task in tasks.items():
            if name in self._current:
                busy.append(task)
            else:
                task.cancel()
        if busy:
            _, pending = await asyncio.wait(busy, timeout=drain_timeout)
            for task in pending:
                logger.warning("worker_abandoned", worker=task.get_name())
                task.cancel()
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        logger.info("worker_pool_stopped", size=len(tasks))
        for result in results:
            if isinstance(result, Exception):
                raise result

    async def join(self) -> None:
        """Wait until the workers exit, re-raising the first defect that killed one.

        Workers only exit on their own when the pool itself is broken, so this
        is how a supervisor notices a crashed worker before ``stop()``.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
