"""In-memory implementations of ClaimStore and JobQueue"""

from claimy.mem.memory_claim_store import MemoryClaimStore
from claimy.mem.memory_job_queue import MemoryJobQueue

__all__ = ["MemoryClaimStore", "MemoryJobQueue"]
