"""
Abstract base test case for JobQueue implementations.

This module provides a test suite shared by every JobQueue implementation.
The class name is intentionally chosen to avoid automatic discovery by pytest/pylint.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
import unittest
from uuid import uuid4

from claimy.claimy_error import ClaimyError
from claimy.job import Job, JobKind, JobSettings, JobStatus
from claimy.job_handler import JobHandler
from claimy.job_queue import JobQueue

FAST_SETTINGS = {
    JobKind.CREATE_CLAIM: JobSettings(concurrency=2, max_attempts=3, backoff_seconds=0.01),
    JobKind.DELETE_SERVER: JobSettings(
        concurrency=1, max_attempts=3, backoff_seconds=0.01, exclusive=True
    ),
}


@dataclass
class RecordingHandler(JobHandler):
    """Handler which records jobs, optionally failing or holding each one"""

    failures: int = 0
    delay: float = 0
    jobs: list[Job] = field(default_factory=list)
    running: int = 0
    max_running: int = 0

    async def on_job(self, job: Job, job_queue: JobQueue) -> None:
        self.jobs.append(job)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures > 0:
                self.failures -= 1
                raise ValueError("handler failed")
        finally:
            self.running -= 1


@dataclass
class GatedHandler(JobHandler):
    """Handler which blocks until released"""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    async def on_job(self, job: Job, job_queue: JobQueue) -> None:
        self.started.set()
        await self.release.wait()


class AbstractJobQueueTestBase(unittest.IsolatedAsyncioTestCase, ABC):
    """
    Abstract base test case for JobQueue implementations.

    Concrete test classes should inherit from this and implement create_queue().
    """

    @abstractmethod
    async def create_queue(self) -> JobQueue:
        """Create an instance of the JobQueue implementation to test, using FAST_SETTINGS"""

    async def asyncSetUp(self):
        self.queue = await self.create_queue()
        self.entered = False

    async def asyncTearDown(self):
        if self.entered:
            await self.queue.__aexit__(None, None, None)

    async def enter(self):
        await self.queue.__aenter__()
        self.entered = True

    async def wait_for_status(
        self, job_id: str, statuses: set[JobStatus], timeout: float = 5
    ) -> Job:
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            job = await self.queue.get_job(job_id)
            if job is not None and job.status in statuses:
                return job
            if asyncio.get_running_loop().time() > deadline:
                self.fail(f"Job {job_id} did not reach {statuses}, last seen {job}")
            await asyncio.sleep(0.01)

    # Lifecycle

    async def test_enqueue_before_enter_fails(self):
        with self.assertRaises(ClaimyError):
            await self.queue.enqueue_create(str(uuid4()))

    async def test_register_handler_twice_fails(self):
        self.queue.register_handler(JobKind.CREATE_CLAIM, RecordingHandler())
        with self.assertRaises(ClaimyError):
            self.queue.register_handler(JobKind.CREATE_CLAIM, RecordingHandler())

    # Producer

    async def test_enqueue_create_is_idempotent(self):
        await self.enter()
        claim_id = str(uuid4())
        first = await self.queue.enqueue_create(claim_id)
        second = await self.queue.enqueue_create(claim_id)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.claim_id, claim_id)
        self.assertEqual(first.status, JobStatus.WAITING)
        stats = await self.queue.get_stats()
        self.assertEqual(stats[JobKind.CREATE_CLAIM.value].waiting, 1)

    async def test_enqueue_delete_is_delayed(self):
        await self.enter()
        claim_id = str(uuid4())
        job_id = await self.queue.enqueue_delete(claim_id, 4)
        job = await self.queue.get_job(job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        self.assertEqual(job.kind, JobKind.DELETE_SERVER)
        self.assertEqual(job.claim_id, claim_id)
        self.assertAlmostEqual(
            (job.run_at - job.created_at).total_seconds(), 4 * 3600, delta=1
        )

    async def test_repeated_delete_jobs_get_distinct_ids(self):
        await self.enter()
        claim_id = str(uuid4())
        job_ids = [await self.queue.enqueue_delete(claim_id, 4) for _ in range(3)]
        self.assertEqual(len(set(job_ids)), 3)
        for job_id in job_ids:
            self.assertEqual((await self.queue.get_job(job_id)).status, JobStatus.DELAYED)

    async def test_cancel_pending_job(self):
        await self.enter()
        job_id = await self.queue.enqueue_delete(str(uuid4()), 4)
        self.assertTrue(await self.queue.cancel(job_id))
        job = await self.queue.get_job(job_id)
        self.assertEqual(job.status, JobStatus.CANCELLED)
        self.assertIsNotNone(job.finished_at)
        self.assertFalse(await self.queue.cancel(job_id))

    async def test_cancel_unknown_job(self):
        await self.enter()
        self.assertFalse(await self.queue.cancel("no-such-job"))

    async def test_get_unknown_job(self):
        await self.enter()
        self.assertIsNone(await self.queue.get_job("no-such-job"))

    # Consumer

    async def test_handler_runs_job(self):
        handler = RecordingHandler()
        self.queue.register_handler(JobKind.CREATE_CLAIM, handler)
        await self.enter()
        job = await self.queue.enqueue_create(str(uuid4()))
        job = await self.wait_for_status(job.id, {JobStatus.COMPLETED})
        self.assertEqual(job.attempts, 1)
        self.assertIsNotNone(job.finished_at)
        self.assertEqual([j.id for j in handler.jobs], [job.id])

    async def test_handler_registered_after_enter_runs_job(self):
        await self.enter()
        job = await self.queue.enqueue_create(str(uuid4()))
        self.queue.register_handler(JobKind.CREATE_CLAIM, RecordingHandler())
        await self.wait_for_status(job.id, {JobStatus.COMPLETED})

    async def test_failed_job_is_retried(self):
        handler = RecordingHandler(failures=1)
        self.queue.register_handler(JobKind.CREATE_CLAIM, handler)
        await self.enter()
        job = await self.queue.enqueue_create(str(uuid4()))
        job = await self.wait_for_status(job.id, {JobStatus.COMPLETED})
        self.assertEqual(job.attempts, 2)
        self.assertEqual(len(handler.jobs), 2)

    async def test_job_fails_after_max_attempts(self):
        handler = RecordingHandler(failures=10)
        self.queue.register_handler(JobKind.CREATE_CLAIM, handler)
        await self.enter()
        job = await self.queue.enqueue_create(str(uuid4()))
        job = await self.wait_for_status(job.id, {JobStatus.FAILED})
        self.assertEqual(job.attempts, 3)
        self.assertEqual(job.last_error, "handler failed")
        self.assertEqual(len(handler.jobs), 3)
        stats = await self.queue.get_stats()
        self.assertEqual(stats[JobKind.CREATE_CLAIM.value].failed, 1)

    async def test_immediate_delete_runs(self):
        handler = RecordingHandler()
        self.queue.register_handler(JobKind.DELETE_SERVER, handler)
        await self.enter()
        job_id = await self.queue.enqueue_delete(str(uuid4()), 0)
        await self.wait_for_status(job_id, {JobStatus.COMPLETED})

    async def test_delayed_delete_does_not_run_early(self):
        handler = RecordingHandler()
        self.queue.register_handler(JobKind.DELETE_SERVER, handler)
        await self.enter()
        job_id = await self.queue.enqueue_delete(str(uuid4()), 1)
        await asyncio.sleep(0.1)
        job = await self.queue.get_job(job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        self.assertEqual(handler.jobs, [])

    async def test_delete_jobs_run_one_at_a_time(self):
        handler = RecordingHandler(delay=0.05)
        self.queue.register_handler(JobKind.DELETE_SERVER, handler)
        await self.enter()
        job_ids = [await self.queue.enqueue_delete(str(uuid4()), 0) for _ in range(3)]
        for job_id in job_ids:
            await self.wait_for_status(job_id, {JobStatus.COMPLETED})
        self.assertEqual(handler.max_running, 1)

    async def test_create_jobs_respect_concurrency(self):
        handler = RecordingHandler(delay=0.05)
        self.queue.register_handler(JobKind.CREATE_CLAIM, handler)
        await self.enter()
        jobs = [await self.queue.enqueue_create(str(uuid4())) for _ in range(4)]
        for job in jobs:
            await self.wait_for_status(job.id, {JobStatus.COMPLETED})
        self.assertLessEqual(handler.max_running, 2)

    async def test_running_job_cannot_be_cancelled(self):
        handler = GatedHandler()
        self.queue.register_handler(JobKind.DELETE_SERVER, handler)
        await self.enter()
        job_id = await self.queue.enqueue_delete(str(uuid4()), 0)
        await asyncio.wait_for(handler.started.wait(), 5)
        self.assertFalse(await self.queue.cancel(job_id))
        handler.release.set()
        await self.wait_for_status(job_id, {JobStatus.COMPLETED})

    async def test_job_waiting_to_retry_cannot_be_cancelled(self):
        self.queue.settings[JobKind.DELETE_SERVER] = JobSettings(
            concurrency=1, max_attempts=3, backoff_seconds=60, exclusive=True
        )
        handler = RecordingHandler(failures=1)
        self.queue.register_handler(JobKind.DELETE_SERVER, handler)
        await self.enter()
        job_id = await self.queue.enqueue_delete(str(uuid4()), 0)
        job = await self.wait_for_status(job_id, {JobStatus.DELAYED})
        self.assertEqual(job.attempts, 1)
        self.assertFalse(await self.queue.cancel(job_id))
        job = await self.queue.get_job(job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        self.assertIsNone(job.finished_at)

    # Maintenance

    async def test_cleanup_removes_finished_jobs(self):
        self.queue.register_handler(JobKind.CREATE_CLAIM, RecordingHandler())
        await self.enter()
        done = await self.queue.enqueue_create(str(uuid4()))
        await self.wait_for_status(done.id, {JobStatus.COMPLETED})
        pending_id = await self.queue.enqueue_delete(str(uuid4()), 4)

        self.assertEqual(await self.queue.cleanup(timedelta(hours=1)), 0)
        await asyncio.sleep(0.01)
        self.assertEqual(await self.queue.cleanup(timedelta(0)), 1)
        self.assertIsNone(await self.queue.get_job(done.id))
        self.assertIsNotNone(await self.queue.get_job(pending_id))
