from dataclasses import dataclass
import logging

from claimy.claim_orchestrator import ClaimOrchestrator
from claimy.job import Job, JobKind
from claimy.job_handler import JobHandler
from claimy.job_queue import JobQueue

_LOGGER = logging.getLogger(__name__)


@dataclass
class CreateClaimHandler(JobHandler):
    """Provisions the server for the claim named by a create job"""

    orchestrator: ClaimOrchestrator

    async def on_job(self, job: Job, job_queue: JobQueue) -> None:
        await self.orchestrator.process_create(job.claim_id)


@dataclass
class DeleteServerHandler(JobHandler):
    """Reclaims the server for the claim named by a delete job once its grace period is over"""

    orchestrator: ClaimOrchestrator

    async def on_job(self, job: Job, job_queue: JobQueue) -> None:
        await self.orchestrator.process_delete(job.claim_id)


def register_handlers(job_queue: JobQueue, orchestrator: ClaimOrchestrator):
    """Register the claim lifecycle handlers, so that this process runs jobs"""
    job_queue.register_handler(JobKind.CREATE_CLAIM, CreateClaimHandler(orchestrator))
    job_queue.register_handler(JobKind.DELETE_SERVER, DeleteServerHandler(orchestrator))
    _LOGGER.info("Registered claim job handlers")
