"""Tests for the claim lifecycle driven by ClaimOrchestrator."""

import asyncio
import unittest
from dataclasses import dataclass
from unittest.mock import AsyncMock, patch

from claimy.claim_job_handlers import DeleteServerHandler
from claimy.claim_orchestrator import ClaimOrchestrator, ClaimRequest, SubmitResult
from claimy.claim_record import ClaimInput
from claimy.claim_status import ClaimStatus
from claimy.claimy_error import (
    DuplicateActiveClaim,
    HealthcheckTimeout,
    InvalidClaimToken,
    MembershipUnavailable,
    NoAllocationAvailable,
    NotAMember,
    ValidationError,
)
from claimy.failure_code import FailureCode
from claimy.hosting.hosting_port import Allocation, ServerStatus
from claimy.hosting.templates import DEFAULT_TEMPLATES
from claimy.job import Job, JobKind, JobStatus, create_job_id
from claimy.mem.memory_claim_store import MemoryClaimStore
from claimy.mem.memory_job_queue import MemoryJobQueue
from claimy.membership.membership_port import MembershipAction, MembershipEvent
from claimy.notify.notifier import AlertLevel
from tests.fakes import (
    FakeHealthProbe,
    FakeHosting,
    FakeMembership,
    FakeMessenger,
    RecordingNotifier,
)

NUMBER = "+6281234567890"
JID = "6281234567890@s.whatsapp.net"


class TestClaimOrchestrator(unittest.IsolatedAsyncioTestCase):
    """Claims are submitted and processed directly. The queue only runs a handler in
    tests which register one."""

    async def asyncSetUp(self):
        self.claim_store = MemoryClaimStore()
        self.job_queue = MemoryJobQueue()
        await self.claim_store.__aenter__()
        await self.job_queue.__aenter__()
        self.hosting = FakeHosting()
        self.membership = FakeMembership(members={JID})
        self.messenger = FakeMessenger()
        self.notifier = RecordingNotifier()
        self.health_probe = FakeHealthProbe()
        self.orchestrator = self.create_orchestrator()

    async def asyncTearDown(self):
        await self.job_queue.__aexit__(None, None, None)
        await self.claim_store.__aexit__(None, None, None)

    def create_orchestrator(self, **kwargs) -> ClaimOrchestrator:
        values = dict(
            claim_store=self.claim_store,
            job_queue=self.job_queue,
            membership=self.membership,
            hosting=self.hosting,
            health_probe=self.health_probe,
            notifier=self.notifier,
            messenger=self.messenger,
            templates=dict(DEFAULT_TEMPLATES),
            membership_retry_delay=0,
            install_poll_interval=0.01,
            install_max_wait=0.05,
        )
        values.update(kwargs)
        return ClaimOrchestrator(**values)

    async def wait_for_job(self, job_id: str, status: JobStatus, timeout: float = 5) -> Job:
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            job = await self.job_queue.get_job(job_id)
            if job is not None and job.status == status:
                return job
            if asyncio.get_running_loop().time() > deadline:
                self.fail(f"Job {job_id} did not reach {status}, last seen {job}")
            await asyncio.sleep(0.01)

    async def submit(self, number: str = NUMBER, template: str = "nodejs") -> SubmitResult:
        return await self.orchestrator.submit(
            ClaimRequest(wa_number_e164=number, template=template, username="player_one")
        )

    async def create_active_claim(self):
        result = await self.submit()
        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.ACTIVE)
        return claim

    # Submission

    async def test_submit_creates_claim_and_enqueues_create_job(self):
        result = await self.submit()

        claim = await self.claim_store.get_claim(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.CREATING)
        self.assertEqual(claim.wa_jid, JID)
        self.assertEqual(claim.template, "nodejs")
        self.assertIsNotNone(claim.client_token_hash)
        self.assertNotEqual(claim.client_token_hash, result.claim_token)

        job = await self.job_queue.get_job(create_job_id(result.claim_id))
        self.assertIsNotNone(job)
        self.assertEqual(job.status, JobStatus.WAITING)

    async def test_submit_and_process_create_delivers_credentials(self):
        result = await self.submit()
        claim = await self.orchestrator.process_create(result.claim_id)

        self.assertEqual(claim.status, ClaimStatus.ACTIVE)
        self.assertIsNotNone(claim.server_id)
        self.assertIsNotNone(claim.last_healthcheck_at)
        self.assertEqual(claim.allocation_port, 25565)
        self.assertEqual(claim.node_id, 1)
        self.assertEqual(claim.panel_url, "https://panel.example.com")
        self.assertEqual(len(self.messenger.sent), 1)
        wa_jid, text = self.messenger.sent[0]
        self.assertEqual(wa_jid, JID)
        self.assertIn("https://panel.example.com", text)
        self.assertIn("10.0.0.1:25565", text)
        self.assertIn("player_one", text)

    async def test_concurrent_submits_yield_one_claim(self):
        results = await asyncio.gather(
            *[self.submit() for _ in range(5)], return_exceptions=True
        )
        successes = [r for r in results if isinstance(r, SubmitResult)]
        duplicates = [r for r in results if isinstance(r, DuplicateActiveClaim)]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(duplicates), 4)
        self.assertEqual(await self.claim_store.count_claims(wa_jid__eq=JID), 1)

    async def test_submit_with_active_claim_is_rejected(self):
        await self.create_active_claim()
        with self.assertRaises(DuplicateActiveClaim):
            await self.submit()
        self.assertEqual(await self.claim_store.count_claims(wa_jid__eq=JID), 1)

    async def test_submit_for_non_member_is_rejected(self):
        self.membership.members.clear()
        with self.assertRaises(NotAMember):
            await self.submit()
        self.assertEqual(await self.claim_store.count_claims(), 0)

    async def test_privileged_identity_skips_membership_check(self):
        self.membership.members.clear()
        self.orchestrator = self.create_orchestrator(is_privileged=lambda jid: jid == JID)
        result = await self.submit()
        self.assertIsNotNone(await self.claim_store.get_claim(result.claim_id))
        self.assertEqual(self.membership.checks, 0)

    async def test_membership_check_is_retried(self):
        self.membership.failures = 2
        await self.submit()
        self.assertEqual(self.membership.checks, 3)

    async def test_membership_unavailable_after_retries(self):
        self.membership.failures = 3
        with self.assertRaises(MembershipUnavailable):
            await self.submit()
        self.assertEqual(await self.claim_store.count_claims(), 0)

    async def test_invalid_number_is_rejected(self):
        with self.assertRaises(ValidationError):
            await self.submit(number="081234567890")
        self.assertEqual(self.membership.checks, 0)

    async def test_claim_can_be_resubmitted_after_failure(self):
        self.hosting.allocations = {1: []}
        result = await self.submit()
        with self.assertRaises(NoAllocationAvailable):
            await self.orchestrator.process_create(result.claim_id)
        second = await self.submit()
        self.assertNotEqual(second.claim_id, result.claim_id)

    # Creation

    async def test_process_create_twice_does_not_allocate_again(self):
        claim = await self.create_active_claim()
        again = await self.orchestrator.process_create(claim.claim_id)
        self.assertEqual(again.status, ClaimStatus.ACTIVE)
        self.assertEqual(again.server_id, claim.server_id)
        self.assertEqual(self.hosting.calls.count("create_server"), 1)
        self.assertEqual(len(self.messenger.sent), 1)

    async def test_process_create_resumes_when_server_exists(self):
        result = await self.submit()
        await self.claim_store.update(
            result.claim_id,
            {
                "user_id": 7,
                "server_id": 70,
                "allocation_id": 101,
                "node_id": 1,
                "allocation_ip": "10.0.0.1",
                "allocation_port": 25565,
            },
            expected_status=ClaimStatus.CREATING,
        )
        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.ACTIVE)
        self.assertEqual(claim.server_id, 70)
        self.assertNotIn("create_server", self.hosting.calls)
        self.assertIn("create_or_reuse_account", self.hosting.calls)
        self.assertEqual(len(self.messenger.sent), 1)

    async def test_process_create_for_unknown_claim(self):
        self.assertIsNone(await self.orchestrator.process_create("missing"))
        self.assertEqual(self.hosting.calls, [])

    async def test_unknown_template_fails_claim(self):
        result = await self.submit(template="rust")
        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.FAILED)
        self.assertEqual(claim.failure_code, FailureCode.EGG_INVALID)
        self.assertEqual(self.hosting.calls, [])
        self.assertEqual(len(self.notifier.alerts), 1)

    async def test_no_allocation_fails_claim(self):
        self.hosting.allocations = {1: [], 2: []}
        result = await self.submit()
        with self.assertRaises(NoAllocationAvailable):
            await self.orchestrator.process_create(result.claim_id)
        claim = await self.claim_store.get_claim(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.FAILED)
        self.assertEqual(claim.failure_code, FailureCode.NO_ALLOC)
        self.assertIsNotNone(claim.failure_reason)
        level, title, _ = self.notifier.alerts[0]
        self.assertEqual(level, AlertLevel.ERROR)
        self.assertIn("NO_ALLOC", title)

    async def test_failed_claim_is_skipped_on_retry(self):
        self.hosting.allocations = {1: []}
        result = await self.submit()
        with self.assertRaises(NoAllocationAvailable):
            await self.orchestrator.process_create(result.claim_id)
        calls = len(self.hosting.calls)
        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.FAILED)
        self.assertEqual(len(self.hosting.calls), calls)

    async def test_waits_for_installation(self):
        self.hosting.statuses = [
            ServerStatus(status="installing", suspended=False, installing=True),
            ServerStatus(status=None, suspended=False, installing=True),
            ServerStatus(status="offline", suspended=False, installing=False),
        ]
        claim = await self.create_active_claim()
        self.assertEqual(self.hosting.calls.count("get_server_status"), 3)
        self.assertIsNotNone(claim.last_healthcheck_at)

    async def test_suspended_server_fails_claim(self):
        self.hosting.statuses = [ServerStatus(status=None, suspended=True, installing=False)]
        result = await self.submit()
        with self.assertRaises(HealthcheckTimeout):
            await self.orchestrator.process_create(result.claim_id)
        claim = await self.claim_store.get_claim(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.FAILED)
        self.assertEqual(claim.failure_code, FailureCode.HEALTHCHECK_TIMEOUT)

    async def test_installation_timeout_fails_claim(self):
        self.hosting.statuses = [
            ServerStatus(status="installing", suspended=False, installing=True)
            for _ in range(10)
        ]
        result = await self.submit()
        with self.assertRaises(HealthcheckTimeout):
            await self.orchestrator.process_create(result.claim_id)
        claim = await self.claim_store.get_claim(result.claim_id)
        self.assertEqual(claim.failure_code, FailureCode.HEALTHCHECK_TIMEOUT)
        self.assertEqual(self.messenger.sent, [])

    async def test_unreachable_server_fails_claim(self):
        self.health_probe.success = False
        result = await self.submit()
        with self.assertRaises(HealthcheckTimeout):
            await self.orchestrator.process_create(result.claim_id)
        claim = await self.claim_store.get_claim(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.FAILED)
        self.assertEqual(claim.failure_code, FailureCode.HEALTHCHECK_TIMEOUT)
        self.assertEqual(self.messenger.sent, [])

    async def test_install_poll_stops_when_claim_changes(self):
        claim_store = self.claim_store

        @dataclass
        class InterferingHosting(FakeHosting):
            async def get_server_status(self, server_id: int) -> ServerStatus:
                claim = await claim_store.find_by_jid(JID)
                await claim_store.update(
                    claim.claim_id, {"status": ClaimStatus.FAILED}, ClaimStatus.CREATING
                )
                return ServerStatus(status="installing", suspended=False, installing=True)

        self.hosting = InterferingHosting()
        self.orchestrator = self.create_orchestrator()
        result = await self.submit()
        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.FAILED)
        self.assertEqual(self.health_probe.probed, [])
        self.assertEqual(self.messenger.sent, [])

    async def test_falls_back_to_next_node(self):
        self.hosting.allocations = {
            1: [],
            2: [Allocation(id=201, ip="10.0.0.2", port=30000, alias="node2.example.com")],
        }
        claim = await self.create_active_claim()
        self.assertEqual(claim.node_id, 2)
        self.assertEqual(claim.allocation_id, 201)
        self.assertEqual(self.health_probe.probed, [("node2.example.com", 30000)])

    # Reclamation

    async def test_leave_schedules_deletion(self):
        claim = await self.create_active_claim()
        deleting = await self.orchestrator.on_leave(JID)

        self.assertEqual(deleting.status, ClaimStatus.DELETING)
        self.assertIsNotNone(deleting.deletion_scheduled_at)
        self.assertIsNotNone(deleting.delete_job_id)
        job = await self.job_queue.get_job(deleting.delete_job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        self.assertEqual(job.claim_id, claim.claim_id)
        self.assertIn("deletion", self.messenger.sent[-1][1].lower())

    async def test_leave_then_join_restores_claim(self):
        await self.create_active_claim()
        deleting = await self.orchestrator.on_leave(JID)
        restored = await self.orchestrator.on_join(JID)

        self.assertEqual(restored.status, ClaimStatus.ACTIVE)
        self.assertIsNone(restored.deletion_scheduled_at)
        self.assertIsNone(restored.delete_job_id)
        job = await self.job_queue.get_job(deleting.delete_job_id)
        self.assertEqual(job.status, JobStatus.CANCELLED)
        self.assertIn("cancelled", self.messenger.sent[-1][1].lower())

    async def test_join_after_delete_job_cancelled_leaves_claim_deleting(self):
        await self.create_active_claim()
        deleting = await self.orchestrator.on_leave(JID)
        # Cancelled by someone else, so on_join cannot cancel it again
        self.assertTrue(await self.job_queue.cancel(deleting.delete_job_id))

        claim = await self.orchestrator.on_join(JID)
        self.assertEqual(claim.status, ClaimStatus.DELETING)
        self.assertIsNotNone(claim.deletion_scheduled_at)

    async def test_join_while_delete_job_waits_to_retry_leaves_claim_deleting(self):
        self.orchestrator = self.create_orchestrator(grace_period_hours=0)
        self.job_queue.register_handler(
            JobKind.DELETE_SERVER, DeleteServerHandler(self.orchestrator)
        )
        claim = await self.create_active_claim()
        self.hosting.delete_account_failures = 1
        deleting = await self.orchestrator.on_leave(JID)

        # The first attempt removes the server, then fails on the account
        job = await self.wait_for_job(deleting.delete_job_id, JobStatus.DELAYED)
        self.assertEqual(job.attempts, 1)
        self.assertEqual(self.hosting.deleted_servers, [claim.server_id])

        sent = len(self.messenger.sent)
        rejoined = await self.orchestrator.on_join(JID)
        self.assertEqual(rejoined.status, ClaimStatus.DELETING)
        self.assertEqual(rejoined.delete_job_id, deleting.delete_job_id)
        job = await self.job_queue.get_job(deleting.delete_job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        self.assertEqual(len(self.messenger.sent), sent)
        ((level, _, _),) = self.notifier.alerts
        self.assertEqual(level, AlertLevel.ERROR)

    async def test_join_with_newer_claim_leaves_old_claim_deleting(self):
        await self.create_active_claim()
        deleting = await self.orchestrator.on_leave(JID)
        newer = await self.submit()
        sent = len(self.messenger.sent)

        claim = await self.orchestrator.on_join(JID)
        self.assertEqual(claim.claim_id, deleting.claim_id)
        self.assertEqual(claim.status, ClaimStatus.DELETING)
        job = await self.job_queue.get_job(deleting.delete_job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        self.assertEqual(len(self.messenger.sent), sent)
        current = await self.claim_store.get_claim(newer.claim_id)
        self.assertEqual(current.status, ClaimStatus.CREATING)

    async def test_join_conflict_reschedules_delete_job(self):
        await self.create_active_claim()
        deleting = await self.orchestrator.on_leave(JID)
        await self.claim_store.create(ClaimInput(wa_jid=JID, template="nodejs"))

        # The newer claim appears after the check on join
        with patch.object(
            self.claim_store, "find_active_by_jid", AsyncMock(return_value=None)
        ):
            with self.assertRaises(DuplicateActiveClaim):
                await self.orchestrator.on_join(JID)

        claim = await self.claim_store.get_claim(deleting.claim_id)
        self.assertEqual(claim.status, ClaimStatus.DELETING)
        self.assertEqual(claim.deletion_scheduled_at, deleting.deletion_scheduled_at)
        self.assertNotEqual(claim.delete_job_id, deleting.delete_job_id)
        old_job = await self.job_queue.get_job(deleting.delete_job_id)
        self.assertEqual(old_job.status, JobStatus.CANCELLED)
        new_job = await self.job_queue.get_job(claim.delete_job_id)
        self.assertEqual(new_job.status, JobStatus.DELAYED)
        self.assertEqual(new_job.claim_id, deleting.claim_id)

    async def test_leave_while_creating_schedules_deletion_once_active(self):
        result = await self.submit()
        self.assertIsNone(await self.orchestrator.on_leave(JID))
        self.membership.members.discard(JID)

        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.DELETING)
        self.assertIsNotNone(claim.delete_job_id)
        job = await self.job_queue.get_job(claim.delete_job_id)
        self.assertEqual(job.status, JobStatus.DELAYED)
        # Credentials first, then the warning
        self.assertEqual(len(self.messenger.sent), 2)
        self.assertIn("deletion", self.messenger.sent[-1][1].lower())

    async def test_membership_recheck_failure_keeps_claim_active(self):
        result = await self.submit()
        self.membership.members.discard(JID)
        self.membership.failures = 3

        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.ACTIVE)
        self.assertIsNone(claim.delete_job_id)

    async def test_privileged_claim_skips_membership_recheck(self):
        self.orchestrator = self.create_orchestrator(is_privileged=lambda jid: jid == JID)
        result = await self.submit()
        self.membership.members.discard(JID)

        claim = await self.orchestrator.process_create(result.claim_id)
        self.assertEqual(claim.status, ClaimStatus.ACTIVE)
        self.assertEqual(self.membership.checks, 0)

    async def test_leave_without_claim_does_nothing(self):
        self.assertIsNone(await self.orchestrator.on_leave(JID))
        self.assertEqual(self.messenger.sent, [])
        stats = await self.job_queue.get_stats()
        self.assertEqual(stats["delete-server"].delayed, 0)

    async def test_join_without_scheduled_deletion_does_nothing(self):
        await self.create_active_claim()
        self.assertIsNone(await self.orchestrator.on_join(JID))

    async def test_process_delete_removes_server_and_account(self):
        claim = await self.create_active_claim()
        await self.orchestrator.on_leave(JID)
        deleted = await self.orchestrator.process_delete(claim.claim_id)

        self.assertEqual(deleted.status, ClaimStatus.DELETED)
        self.assertIsNone(deleted.deletion_scheduled_at)
        self.assertEqual(self.hosting.deleted_servers, [claim.server_id])
        self.assertEqual(self.hosting.deleted_accounts, [claim.user_id])

    async def test_process_delete_on_deleted_claim_is_noop(self):
        claim = await self.create_active_claim()
        await self.orchestrator.on_leave(JID)
        await self.orchestrator.process_delete(claim.claim_id)
        self.hosting.calls.clear()

        again = await self.orchestrator.process_delete(claim.claim_id)
        self.assertEqual(again.status, ClaimStatus.DELETED)
        self.assertEqual(self.hosting.calls, [])

    async def test_process_delete_after_rejoin_is_noop(self):
        claim = await self.create_active_claim()
        await self.orchestrator.on_leave(JID)
        await self.orchestrator.on_join(JID)
        self.hosting.calls.clear()

        again = await self.orchestrator.process_delete(claim.claim_id)
        self.assertEqual(again.status, ClaimStatus.ACTIVE)
        self.assertEqual(self.hosting.calls, [])

    async def test_membership_events_are_dispatched(self):
        await self.create_active_claim()
        event = MembershipEvent(
            action=MembershipAction.LEAVE,
            wa_jid=JID,
            group_id="120363000000@g.us",
            timestamp=self.orchestrator.clock(),
        )
        claim = await self.orchestrator.on_membership_event(event)
        self.assertEqual(claim.status, ClaimStatus.DELETING)

    async def test_malformed_membership_event(self):
        claim = await self.create_active_claim()
        for wa_jid, group_id in (
            ("6281234567890@g.us", "120363000000@g.us"),
            (JID, "120363000000@s.whatsapp.net"),
        ):
            event = MembershipEvent(
                action=MembershipAction.LEAVE,
                wa_jid=wa_jid,
                group_id=group_id,
                timestamp=self.orchestrator.clock(),
            )
            with self.assertRaises(ValidationError):
                await self.orchestrator.on_membership_event(event)
        stored = await self.claim_store.get_claim(claim.claim_id)
        self.assertEqual(stored.status, ClaimStatus.ACTIVE)

    # Status

    async def test_get_status_of_active_claim(self):
        claim = await self.create_active_claim()
        view = await self.orchestrator.get_status(claim.claim_id)
        self.assertEqual(view.status, ClaimStatus.ACTIVE)
        self.assertEqual(view.server_details.panel_url, "https://panel.example.com")
        self.assertEqual(view.server_details.username, "player_one")

    async def test_get_status_of_failed_claim_uses_reason(self):
        self.hosting.allocations = {1: []}
        result = await self.submit()
        with self.assertRaises(NoAllocationAvailable):
            await self.orchestrator.process_create(result.claim_id)
        view = await self.orchestrator.get_status(result.claim_id)
        self.assertEqual(view.failure_code, FailureCode.NO_ALLOC)
        self.assertIsNone(view.server_details)
        self.assertNotEqual(view.message, "")

    async def test_get_status_of_unknown_claim(self):
        self.assertIsNone(await self.orchestrator.get_status("missing"))

    async def test_get_status_checks_token_when_required(self):
        self.orchestrator = self.create_orchestrator(require_client_token=True)
        result = await self.submit()
        with self.assertRaises(InvalidClaimToken):
            await self.orchestrator.get_status(result.claim_id)
        with self.assertRaises(InvalidClaimToken):
            await self.orchestrator.get_status(result.claim_id, "not-the-token")
        view = await self.orchestrator.get_status(result.claim_id, result.claim_token)
        self.assertEqual(view.status, ClaimStatus.CREATING)
