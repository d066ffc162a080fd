import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from .. import metrics
from ..errors import InvalidTimingError, NotFoundError
from ..sample import SampleJobService
from ..scheduler import JobScheduler
from ..schemas import JobListResponse, JobResponse

router = APIRouter()


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def get_service(request: Request) -> SampleJobService:
    return request.app.state.sample_service


@router.get("/run-job", response_model=JobResponse)
async def run_job(
    name: str = "Hello World",
    key: Optional[str] = None,
    scheduler: JobScheduler = Depends(get_scheduler),
    service: SampleJobService = Depends(get_service),
):
    start = time.time()
    try:
        job_id = await scheduler.enqueue(service.payload_for(name), name=name, idempotency_key=key)
    except Exception as exc:
        metrics.error_count.inc()
        raise HTTPException(status_code=500, detail=str(exc))
    finally:
        metrics.enqueue_latency_seconds.observe(time.time() - start)
    return JobResponse.from_record(scheduler.get_record(job_id), message="Job is enqueued.")


@router.get("/schedule-job", response_model=JobResponse)
async def schedule_job(
    name: str = "Hello World",
    when: str = "PT3H",
    key: Optional[str] = None,
    scheduler: JobScheduler = Depends(get_scheduler),
    service: SampleJobService = Depends(get_service),
):
    start = time.time()
    try:
        job_id = await scheduler.schedule_in(service.payload_for(name), when, name=name, idempotency_key=key)
    except InvalidTimingError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        metrics.error_count.inc()
        raise HTTPException(status_code=500, detail=str(exc))
    finally:
        metrics.enqueue_latency_seconds.observe(time.time() - start)
    return JobResponse.from_record(scheduler.get_record(job_id), message="Job is scheduled.")


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)):
    try:
        record = scheduler.get_record(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    return JobResponse.from_record(record)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(scheduler: JobScheduler = Depends(get_scheduler)):
    return JobListResponse(jobs=[JobResponse.from_record(r) for r in scheduler.list_records()])


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)):
    try:
        await scheduler.cancel(job_id)
        record = scheduler.get_record(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    return JobResponse.from_record(record)
