"""
Claimy - hosted server claims for members of a WhatsApp group.

This package provides the claim lifecycle orchestrator together with pluggable
claim stores, job queues and the collaborators it drives (hosting panel,
membership bot, alerting).
"""

# Core
from claimy.claim_orchestrator import ClaimOrchestrator, ClaimRequest, ClaimStatusView
from claimy.claim_record import ClaimInput, ClaimRecord
from claimy.claim_status import ClaimStatus
from claimy.claim_store import ClaimStore
from claimy.claimy_error import ClaimyError
from claimy.failure_code import FailureCode
from claimy.job import Job, JobKind, JobStatus
from claimy.job_handler import JobHandler
from claimy.job_queue import JobQueue
from claimy.page import Page

# Memory implementation
from claimy.mem import MemoryClaimStore, MemoryJobQueue

__all__ = [
    # Core
    'ClaimOrchestrator',
    'ClaimRequest',
    'ClaimStatusView',
    'ClaimInput',
    'ClaimRecord',
    'ClaimStatus',
    'ClaimStore',
    'ClaimyError',
    'FailureCode',
    'Job',
    'JobKind',
    'JobStatus',
    'JobHandler',
    'JobQueue',
    'Page',

    # Memory implementation
    'MemoryClaimStore',
    'MemoryJobQueue',
]
