import asyncio
from abc import abstractmethod
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
import logging

from claimy.claimy_error import ClaimyError
from claimy.job import (
    DEFAULT_JOB_SETTINGS,
    FINISHED_JOB_STATUSES,
    PENDING_JOB_STATUSES,
    Job,
    JobKind,
    JobSettings,
    JobStatus,
    KindStats,
    create_job_id,
    delete_job_id,
)
from claimy.job_handler import JobHandler
from claimy.job_queue import JobQueue

_LOGGER = logging.getLogger(__name__)
_MAX_DELETE_ID_ATTEMPTS = 10


@dataclass
class AbstractJobQueue(JobQueue):
    """
    Job queue built on a small set of storage primitives. Subclasses say how jobs and
    schedules are stored; this class runs the dispatch loop, retries and backoff.

    A scheduled job is owned by whoever removes it from the schedule, so claiming a job
    to run it and cancelling it can never both succeed.
    """

    settings: dict[JobKind, JobSettings] = field(
        default_factory=lambda: dict(DEFAULT_JOB_SETTINGS)
    )
    poll_interval: float = 1.0
    shutdown_timeout: float = 30.0
    lock_ttl_seconds: int = 600
    _handlers: dict[JobKind, JobHandler] = field(default_factory=dict, init=False)
    _loops: dict[JobKind, asyncio.Task] = field(default_factory=dict, init=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False)
    _wakeup: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    running: bool = field(default=False, init=False)

    # Storage primitives

    @abstractmethod
    async def _insert_job(self, job: Job) -> bool:
        """Store a new job. Returns False without changing anything if the id exists."""

    @abstractmethod
    async def _save_job(self, job: Job) -> None:
        """Overwrite a stored job"""

    @abstractmethod
    async def _load_job(self, job_id: str) -> Job | None:
        """Load a job"""

    @abstractmethod
    async def _delete_jobs(self, job_ids: list[str]) -> int:
        """Remove jobs"""

    @abstractmethod
    async def _list_jobs(self) -> list[Job]:
        """Load every stored job"""

    @abstractmethod
    async def _schedule(self, job: Job) -> None:
        """Make a job due at its run_at"""

    @abstractmethod
    async def _unschedule(self, kind: JobKind, job_id: str) -> bool:
        """Atomically remove a job from the schedule. Returns True for exactly one caller."""

    @abstractmethod
    async def _due_job_ids(self, kind: JobKind, now: datetime, limit: int) -> list[str]:
        """Get the ids of jobs of the kind given which are due, oldest first"""

    @abstractmethod
    async def _try_lock(self, kind: JobKind) -> bool:
        """Acquire the cross worker lock for an exclusive job kind"""

    @abstractmethod
    async def _unlock(self, kind: JobKind) -> None:
        """Release the cross worker lock for an exclusive job kind"""

    # Lifecycle

    def _check_running(self):
        if not self.running:
            raise ClaimyError("JobQueue is not running. Call __aenter__ first.")

    async def __aenter__(self):
        self.running = True
        for kind in self._handlers:
            self._start_loop(kind)
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self.running = False
        for loop in self._loops.values():
            loop.cancel()
        self._loops.clear()
        if self._tasks:
            _LOGGER.info(f"Waiting for {len(self._tasks)} running jobs to finish")
            done, pending = await asyncio.wait(
                list(self._tasks), timeout=self.shutdown_timeout
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)

    def register_handler(self, kind: JobKind, handler: JobHandler) -> None:
        if kind in self._handlers:
            raise ClaimyError(f"A handler is already registered for {kind.value}")
        self._handlers[kind] = handler
        if self.running:
            self._start_loop(kind)

    def _start_loop(self, kind: JobKind):
        if kind not in self._loops:
            self._loops[kind] = asyncio.create_task(self._run_kind(kind))

    # Producer operations

    async def enqueue_create(self, claim_id: str) -> Job:
        self._check_running()
        job = Job(
            id=create_job_id(claim_id),
            kind=JobKind.CREATE_CLAIM,
            claim_id=claim_id,
            status=JobStatus.WAITING,
        )
        if not await self._insert_job(job):
            existing = await self._load_job(job.id)
            _LOGGER.info(f"Create job for claim {claim_id} already exists")
            return existing
        await self._schedule(job)
        self._wakeup.set()
        _LOGGER.info(f"Enqueued create job {job.id}")
        return job

    async def enqueue_delete(self, claim_id: str, delay_hours: float) -> str:
        self._check_running()
        now = datetime.now(UTC)
        for _ in range(_MAX_DELETE_ID_ATTEMPTS):
            job = Job(
                id=delete_job_id(claim_id, now),
                kind=JobKind.DELETE_SERVER,
                claim_id=claim_id,
                status=JobStatus.DELAYED if delay_hours > 0 else JobStatus.WAITING,
                run_at=now + timedelta(hours=delay_hours),
                created_at=now,
            )
            if await self._insert_job(job):
                break
            # Ids are per millisecond: take the next one
            now += timedelta(milliseconds=1)
        else:
            raise ClaimyError(f"Job {job.id} already exists")
        await self._schedule(job)
        self._wakeup.set()
        _LOGGER.info(f"Enqueued delete job {job.id} to run at {job.run_at.isoformat()}")
        return job.id

    async def cancel(self, job_id: str) -> bool:
        self._check_running()
        job = await self._load_job(job_id)
        if job is None or job.status not in PENDING_JOB_STATUSES:
            return False
        if job.attempts:
            # Delayed for a retry: some of its work may already be done
            _LOGGER.info(f"Job {job_id} already ran {job.attempts} times, not cancelling")
            return False
        if not await self._unschedule(job.kind, job_id):
            # A worker claimed it first
            return False
        job = replace(job, status=JobStatus.CANCELLED, finished_at=datetime.now(UTC))
        await self._save_job(job)
        _LOGGER.info(f"Cancelled job {job_id}")
        return True

    async def get_job(self, job_id: str) -> Job | None:
        self._check_running()
        return await self._load_job(job_id)

    async def get_stats(self) -> dict[str, KindStats]:
        self._check_running()
        stats = {kind.value: KindStats() for kind in JobKind}
        for job in await self._list_jobs():
            kind_stats = stats[job.kind.value]
            setattr(kind_stats, job.status.value, getattr(kind_stats, job.status.value) + 1)
        return stats

    async def cleanup(self, older_than: timedelta = timedelta(hours=24)) -> int:
        self._check_running()
        cutoff = datetime.now(UTC) - older_than
        job_ids = [
            job.id
            for job in await self._list_jobs()
            if job.status in FINISHED_JOB_STATUSES
            and job.finished_at is not None
            and job.finished_at < cutoff
        ]
        if not job_ids:
            return 0
        removed = await self._delete_jobs(job_ids)
        _LOGGER.info(f"Removed {removed} finished jobs")
        return removed

    # Consumer

    async def _run_kind(self, kind: JobKind):
        settings = self.settings[kind]
        semaphore = asyncio.Semaphore(settings.concurrency)
        try:
            while True:
                await semaphore.acquire()
                locked = False
                job_id = None
                try:
                    if settings.exclusive:
                        locked = await self._try_lock(kind)
                    if locked or not settings.exclusive:
                        job_id = await self._claim_next(kind)
                except Exception:
                    _LOGGER.error(f"error_claiming_{kind.value}_job", exc_info=True)
                if job_id is None:
                    if locked:
                        await self._unlock(kind)
                    semaphore.release()
                    await self._wait_for_work()
                    continue
                task = asyncio.create_task(self._process(kind, job_id, semaphore, locked))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except asyncio.CancelledError:
            _LOGGER.info(f"Stopped {kind.value} worker")
            raise

    async def _wait_for_work(self):
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _claim_next(self, kind: JobKind) -> str | None:
        now = datetime.now(UTC)
        for job_id in await self._due_job_ids(kind, now, 10):
            if await self._unschedule(kind, job_id):
                return job_id
        return None

    async def _process(
        self, kind: JobKind, job_id: str, semaphore: asyncio.Semaphore, locked: bool
    ):
        try:
            job = await self._load_job(job_id)
            if job is None:
                _LOGGER.warning(f"Job {job_id} vanished before it could run")
                return
            await self._run_job(job)
        finally:
            if locked:
                await self._unlock(kind)
            semaphore.release()

    async def _run_job(self, job: Job):
        settings = self.settings[job.kind]
        handler = self._handlers[job.kind]
        job = replace(job, status=JobStatus.ACTIVE, attempts=job.attempts + 1)
        await self._save_job(job)
        _LOGGER.info(f"Running {job.kind.value} job {job.id} (attempt {job.attempts})")
        try:
            await handler.on_job(job, self)
        except asyncio.CancelledError:
            # Shutdown while running: hand the attempt back
            job = replace(job, status=JobStatus.WAITING, attempts=job.attempts - 1)
            await self._save_job(job)
            await self._schedule(job)
            raise
        except Exception as e:
            _LOGGER.error(
                f"{job.kind.value} job {job.id} failed on attempt {job.attempts}: {e}",
                exc_info=True,
            )
            now = datetime.now(UTC)
            if job.attempts < settings.max_attempts:
                delay = settings.get_retry_delay(job.attempts)
                job = replace(
                    job,
                    status=JobStatus.DELAYED,
                    run_at=now + timedelta(seconds=delay),
                    last_error=str(e),
                )
                await self._save_job(job)
                await self._schedule(job)
            else:
                job = replace(
                    job, status=JobStatus.FAILED, finished_at=now, last_error=str(e)
                )
                await self._save_job(job)
            return
        job = replace(job, status=JobStatus.COMPLETED, finished_at=datetime.now(UTC))
        await self._save_job(job)
        _LOGGER.info(f"Completed {job.kind.value} job {job.id}")
