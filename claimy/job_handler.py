from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from claimy.job import Job

if TYPE_CHECKING:
    from claimy.job_queue import JobQueue


class JobHandler(ABC):
    """
    Handler for one kind of job. Handlers should be stateless apart from the services
    they wrap: the same job may be delivered more than once.
    """

    @abstractmethod
    async def on_job(self, job: Job, job_queue: "JobQueue") -> None:
        """Process a job. Raising marks the attempt as failed and the job is retried
        until its attempts are exhausted.

        Args:
            job: The job being run
            job_queue: The job queue, which may be used to enqueue follow up jobs
        """
