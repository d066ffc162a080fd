import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request

from .api import jobs as jobs_api
from .logging_config import configure_logging
from .metrics import metrics_response, request_latency_seconds
from .sample import SampleJobService
from .scheduler import JobScheduler
from .store import get_job_store

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler: JobScheduler = app.state.scheduler
    await scheduler.restore(app.state.sample_service.resolve)
    await scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        if scheduler.store is not None:
            await scheduler.store.close()


def create_app(scheduler: Optional[JobScheduler] = None, sample_service: Optional[SampleJobService] = None) -> FastAPI:
    app = FastAPI(title="jobdispatch", lifespan=lifespan)
    app.state.scheduler = scheduler or JobScheduler(store=get_job_store())
    app.state.sample_service = sample_service or SampleJobService()
    app.include_router(jobs_api.router)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = time.time()
        try:
            response = await call_next(request)
            return response
        finally:
            request_latency_seconds.observe(time.time() - start)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        scheduler: JobScheduler = app.state.scheduler
        return {"ready": scheduler.is_running, **scheduler.stats()}

    @app.get("/metrics")
    async def metrics():
        return metrics_response()

    return app


configure_logging()
app = create_app()
