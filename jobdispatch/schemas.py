from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .outcomes import JobRecord


class JobResponse(BaseModel):
    job_id: str
    status: str
    name: Optional[str] = None
    created_at: datetime
    due_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_record(cls, record: JobRecord, message: Optional[str] = None) -> "JobResponse":
        return cls(
            job_id=record.job_id,
            status=record.state.value,
            name=record.name,
            created_at=record.created_at,
            due_at=record.due_at,
            started_at=record.started_at,
            finished_at=record.finished_at,
            error=record.error,
            message=message,
        )


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
