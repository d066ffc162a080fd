#!/usr/bin/env python3
"""Standalone scheduler that runs a few sample jobs, some now and some delayed.

Usage:
  python scripts/run_scheduler.py

Environment variables:
- WORKER_COUNT, POLL_CEILING_SECONDS (optional, see jobdispatch.config)
- JOB_STORE=redis and REDIS_URL to checkpoint job records in Redis
- DEMO_JOBS (optional, default 5): number of jobs enqueued right away
- DEMO_DELAY (optional, default PT2S): ISO-8601 delay for the scheduled job
"""
import asyncio
import os
from typing import List, Optional

import structlog

from jobdispatch.logging_config import configure_logging
from jobdispatch.outcomes import JobRecord
from jobdispatch.sample import SampleJobService
from jobdispatch.scheduler import JobScheduler
from jobdispatch.store import JobStore, get_job_store

DEMO_JOBS = int(os.getenv("DEMO_JOBS", "5"))
DEMO_DELAY = os.getenv("DEMO_DELAY", "PT2S")

logger = structlog.get_logger("run_scheduler")


async def run_demo(
    jobs: int = DEMO_JOBS,
    delay: str = DEMO_DELAY,
    store: Optional[JobStore] = None,
    service: Optional[SampleJobService] = None,
) -> List[JobRecord]:
    service = service or SampleJobService()
    scheduler = JobScheduler(store=store)
    await scheduler.restore(service.resolve)
    async with scheduler:
        job_ids = []
        for i in range(jobs):
            name = f"job-{i + 1}"
            job_ids.append(await scheduler.enqueue(service.payload_for(name), name=name))
        job_ids.append(await scheduler.schedule_in(service.payload_for("delayed"), delay, name="delayed"))
        logger.info("demo_submitted", jobs=len(job_ids), delay=delay)
        records = [await scheduler.wait_for(job_id) for job_id in job_ids]
    for rec in records:
        logger.info("demo_job_finished", job_id=rec.job_id, name=rec.name, state=rec.state.value)
    return records


async def main():
    store = get_job_store()
    try:
        await run_demo(store=store)
    finally:
        await store.close()


if __name__ == "__main__":
    configure_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("run_scheduler_exiting")
