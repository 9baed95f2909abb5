from abc import ABC, abstractmethod
from datetime import timedelta

from claimy.job import Job, JobKind, KindStats
from claimy.job_handler import JobHandler


class JobQueue(ABC):
    """
    Durable, delayed job queue with per kind concurrency and retries. Jobs are run by
    the handler registered for their kind once the queue has been entered.
    """

    @abstractmethod
    async def __aenter__(self):
        """Begin using this queue. Workers start for every registered handler."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc_value, traceback):
        """Stop workers and release resources"""

    @abstractmethod
    def register_handler(self, kind: JobKind, handler: JobHandler) -> None:
        """Register the handler for a job kind. Only one handler per kind."""

    @abstractmethod
    async def enqueue_create(self, claim_id: str) -> Job:
        """Enqueue the create job for a claim. The job id is the claim id, so
        enqueueing the same claim twice returns the existing job."""

    @abstractmethod
    async def enqueue_delete(self, claim_id: str, delay_hours: float) -> str:
        """Enqueue a delayed delete job for a claim and return its id"""

    @abstractmethod
    async def cancel(self, job_id: str) -> bool:
        """Cancel a job which has never started. Returns False if the job does not
        exist, is running, is waiting to retry a failed attempt or has finished."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        """Get a job given its id"""

    @abstractmethod
    async def get_stats(self) -> dict[str, KindStats]:
        """Get job counts keyed by job kind"""

    @abstractmethod
    async def cleanup(self, older_than: timedelta = timedelta(hours=24)) -> int:
        """Remove finished jobs which finished before the cutoff"""
