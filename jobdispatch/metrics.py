from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

jobs_submitted_total = Counter("jobs_submitted_total", "Total jobs submitted to the scheduler")
jobs_enqueued_total = Counter("jobs_enqueued_total", "Jobs put straight into the ready queue")
jobs_scheduled_total = Counter("jobs_scheduled_total", "Jobs placed in the delay index")
jobs_promoted_total = Counter("jobs_promoted_total", "Jobs moved from the delay index to the ready queue")
jobs_cancelled_total = Counter("jobs_cancelled_total", "Jobs cancelled before a worker claimed them")
error_count = Counter("error_count", "Total errors encountered outside job payloads")
enqueue_latency_seconds = Histogram("enqueue_latency_seconds", "Time to submit a job")
promotion_lag_seconds = Histogram("promotion_lag_seconds", "Delay between a job's due instant and its promotion")
request_latency_seconds = Histogram("request_latency_seconds", "HTTP request latency seconds")
ready_queue_depth = Gauge("ready_queue_depth", "Jobs waiting in the ready queue")
scheduled_jobs = Gauge("scheduled_jobs", "Jobs waiting in the delay index")

# Worker / execution metrics
jobs_executed_total = Counter("jobs_executed_total", "Total jobs executed by workers", ["outcome"])
execution_latency_seconds = Histogram("execution_latency_seconds", "Job execution latency seconds")
active_workers = Gauge("active_workers", "Workers currently running a payload")


def metrics_response():
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
