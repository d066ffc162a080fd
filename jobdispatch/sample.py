import time
from functools import partial
from typing import List, Optional

import structlog

from .models import Payload
from .outcomes import JobRecord

logger = structlog.get_logger(__name__)


class SampleJobService:
    """Stand-in workload run by the HTTP endpoints."""

    def __init__(self, work_seconds: float = 0.05):
        self.work_seconds = work_seconds
        self.executed: List[str] = []

    def execute(self, name: str) -> str:
        logger.info("sample_job_executing", name=name)
        if self.work_seconds:
            time.sleep(self.work_seconds)
        self.executed.append(name)
        return f"Hello {name}"

    def payload_for(self, name: str) -> Payload:
        return partial(self.execute, name)

    def resolve(self, record: JobRecord) -> Optional[Payload]:
        # Records written by the HTTP layer carry the sample name as the job name.
        if record.name is None:
            return None
        return self.payload_for(record.name)
