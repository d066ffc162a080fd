import os

WORKER_COUNT = int(os.getenv("WORKER_COUNT", "4"))
POLL_CEILING_SECONDS = float(os.getenv("POLL_CEILING_SECONDS", "1.0"))
RETENTION_SECONDS = float(os.getenv("RETENTION_SECONDS", "3600"))

# "memory" or "redis"
JOB_STORE = os.getenv("JOB_STORE", "memory")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_JOBS_KEY = os.getenv("REDIS_JOBS_KEY", "jobs")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
# "console" or "json"
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")
