import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional

from .errors import InvalidTransitionError

Payload = Callable[[], Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobState(str, Enum):
    SCHEDULED = "scheduled"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[JobState] = frozenset(
    {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED}
)

# Only these moves are legal; anything else is a bug in the core.
TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.SCHEDULED: frozenset({JobState.READY, JobState.CANCELLED}),
    JobState.READY: frozenset({JobState.RUNNING, JobState.CANCELLED}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.FAILED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


@dataclass(frozen=True, eq=False)
class Job:
    """One unit of work.

    Everything but ``state`` is fixed at construction. ``state`` moves forward
    through :meth:`advance`, which the dispatcher and worker pool call.
    """

    payload: Payload
    created_at: datetime = field(default_factory=utcnow)
    due_at: Optional[datetime] = None
    name: Optional[str] = None
    id: str = field(default_factory=new_job_id)
    state: JobState = JobState.READY

    def __post_init__(self):
        if not callable(self.payload):
            raise TypeError(f"job payload must be callable, got {type(self.payload).__name__}")
        if self.due_at is None:
            object.__setattr__(self, "due_at", self.created_at)
        if self.due_at < self.created_at:
            raise ValueError("due_at must not be earlier than created_at")

    def can_advance(self, to: JobState) -> bool:
        return to in TRANSITIONS[self.state]

    def advance(self, to: JobState) -> None:
        if not self.can_advance(to):
            raise InvalidTransitionError(
                f"job {self.id}: illegal transition {self.state.value} -> {to.value}"
            )
        object.__setattr__(self, "state", to)

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id!r}, name={self.name!r}, state={self.state.value}, "
            f"due_at={self.due_at.isoformat()})"
        )
