from dataclasses import dataclass, field
from datetime import datetime

from claimy.abstract_job_queue import AbstractJobQueue
from claimy.job import Job, JobKind


@dataclass
class MemoryJobQueue(AbstractJobQueue):
    """In-memory job queue for tests and single process deployments. Jobs do not
    survive a restart."""

    _jobs: dict[str, Job] = field(default_factory=dict, init=False)
    _schedules: dict[JobKind, dict[str, datetime]] = field(
        default_factory=lambda: {kind: {} for kind in JobKind}, init=False
    )
    _locks: set[JobKind] = field(default_factory=set, init=False)

    async def _insert_job(self, job: Job) -> bool:
        if job.id in self._jobs:
            return False
        self._jobs[job.id] = job
        return True

    async def _save_job(self, job: Job) -> None:
        self._jobs[job.id] = job

    async def _load_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def _delete_jobs(self, job_ids: list[str]) -> int:
        removed = 0
        for job_id in job_ids:
            job = self._jobs.pop(job_id, None)
            if job is not None:
                self._schedules[job.kind].pop(job_id, None)
                removed += 1
        return removed

    async def _list_jobs(self) -> list[Job]:
        return list(self._jobs.values())

    async def _schedule(self, job: Job) -> None:
        self._schedules[job.kind][job.id] = job.run_at

    async def _unschedule(self, kind: JobKind, job_id: str) -> bool:
        return self._schedules[kind].pop(job_id, None) is not None

    async def _due_job_ids(self, kind: JobKind, now: datetime, limit: int) -> list[str]:
        due = [
            (run_at, job_id)
            for job_id, run_at in self._schedules[kind].items()
            if run_at <= now
        ]
        due.sort()
        return [job_id for _, job_id in due[:limit]]

    async def _try_lock(self, kind: JobKind) -> bool:
        if kind in self._locks:
            return False
        self._locks.add(kind)
        return True

    async def _unlock(self, kind: JobKind) -> None:
        self._locks.discard(kind)
