from typing import Optional


class JobDispatchError(Exception):
    """Base class for errors raised by the dispatch core."""


class InvalidTimingError(JobDispatchError, ValueError):
    """A due instant or delay could not be turned into a valid schedule."""


class NotFoundError(JobDispatchError, KeyError):
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"job {self.job_id} not found"


class InvalidTransitionError(JobDispatchError):
    pass


class PayloadFailure(JobDispatchError):
    """Wraps whatever a job payload raised while it was running.

    Stored on the job's record; never re-raised into the dispatcher or pool.
    """

    def __init__(self, job_id: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.job_id = job_id
        self.cause = cause
        if message is None:
            message = f"{type(cause).__name__}: {cause}" if cause is not None else "payload failed"
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message
