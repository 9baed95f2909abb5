from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class JobKind(Enum):
    CREATE_CLAIM = "create-claim"
    DELETE_SERVER = "delete-server"


class JobStatus(Enum):
    """Status of a job. COMPLETED, FAILED and CANCELLED are final."""

    DELAYED = "delayed"
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PENDING_JOB_STATUSES = frozenset({JobStatus.DELAYED, JobStatus.WAITING})
FINISHED_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


@dataclass
class Job:
    """A unit of work. The id is the idempotency key."""

    id: str
    kind: JobKind
    claim_id: str
    status: JobStatus = JobStatus.WAITING
    attempts: int = 0
    run_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class JobSettings:
    """How jobs of one kind are run"""

    concurrency: int = 1
    max_attempts: int = 3
    backoff_seconds: float = 2
    # Only one job of this kind runs at a time across every worker process
    exclusive: bool = False

    def get_retry_delay(self, attempts: int) -> float:
        """Exponential backoff: base, 2 x base, 4 x base..."""
        return self.backoff_seconds * 2 ** max(attempts - 1, 0)


DEFAULT_JOB_SETTINGS = {
    JobKind.CREATE_CLAIM: JobSettings(concurrency=2, max_attempts=3, backoff_seconds=2),
    JobKind.DELETE_SERVER: JobSettings(
        concurrency=1, max_attempts=3, backoff_seconds=5, exclusive=True
    ),
}


@dataclass
class KindStats:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


def create_job_id(claim_id: str) -> str:
    return claim_id


def delete_job_id(claim_id: str, now: datetime | None = None) -> str:
    if now is None:
        now = datetime.now(UTC)
    return f"delete-{claim_id}-{int(now.timestamp() * 1000)}"
