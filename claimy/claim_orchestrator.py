import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging
import re
from typing import Any, Callable

from claimy.claim_record import ClaimInput, ClaimRecord
from claimy.claim_status import ClaimStatus, can_transition
from claimy.claim_store import ClaimStore
from claimy.claimy_error import (
    ConflictError,
    DuplicateActiveClaim,
    EggInvalid,
    HealthcheckTimeout,
    HostingApiError,
    InvalidClaimToken,
    InvalidTransition,
    MembershipUnavailable,
    NotAMember,
    ValidationError,
    classify,
)
from claimy.crypto import generate_claim_token, hash_token, verify_token
from claimy.failure_code import FailureCode, get_failure_reason
from claimy.formatting import is_valid_e164, is_valid_group_id, is_valid_jid, phone_to_jid
from claimy.health_probe import HealthProbe
from claimy.hosting.hosting_port import AllocationRequest, HostingPort
from claimy.hosting.templates import ServerTemplate
from claimy.job_queue import JobQueue
from claimy.membership.membership_port import (
    MembershipAction,
    MembershipEvent,
    MembershipPort,
    MessengerPort,
)
from claimy.messages import (
    credentials_message,
    deletion_cancelled_message,
    deletion_warning_message,
)
from claimy.notify.notifier import NotifierPort

_LOGGER = logging.getLogger(__name__)
_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,32}$")

STATUS_MESSAGES = {
    ClaimStatus.CREATING: "Your server is being created...",
    ClaimStatus.ACTIVE: "Your server is ready! Check WhatsApp for your login details.",
    ClaimStatus.FAILED: "Server creation failed. Please try again.",
    ClaimStatus.DELETING: "Your server is scheduled for deletion. Rejoin the group to cancel.",
    ClaimStatus.DELETED: "Your server has been deleted.",
}


@dataclass
class ClaimRequest:
    wa_number_e164: str
    template: str
    username: str


@dataclass
class SubmitResult:
    claim_id: str
    claim_token: str


@dataclass
class ServerDetails:
    panel_url: str | None
    username: str | None


@dataclass
class ClaimStatusView:
    """What a claimant may see about their claim"""

    claim_id: str
    status: ClaimStatus
    message: str
    created_at: datetime
    updated_at: datetime
    failure_code: FailureCode | None = None
    deletion_scheduled_at: datetime | None = None
    server_details: ServerDetails | None = None


def _never_privileged(wa_jid: str) -> bool:
    return False


@dataclass
class ClaimOrchestrator:
    """
    Drives claims through their lifecycle:

        creating -> active -> deleting -> deleted
            |                   |
            v                   +-> active (rejoined before the grace period ended)
          failed

    Every status change goes through the store with a compare and set on the current
    status, so a job which lost a race finds out rather than overwriting newer state.
    """

    claim_store: ClaimStore
    job_queue: JobQueue
    membership: MembershipPort
    hosting: HostingPort
    health_probe: HealthProbe
    notifier: NotifierPort
    messenger: MessengerPort
    templates: dict[str, ServerTemplate]
    is_privileged: Callable[[str], bool] = _never_privileged
    grace_period_hours: float = 4
    require_client_token: bool = False
    membership_retries: int = 3
    membership_retry_delay: float = 1.0
    install_poll_interval: float = 30
    install_max_wait: float = 600
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))

    # Submission

    async def submit(self, request: ClaimRequest) -> SubmitResult:
        """Validate a claim, create its record and enqueue its create job.

        Raises:
            ValidationError: If the number or username is malformed
            MembershipUnavailable: If membership could not be checked
            NotAMember: If the claimant is not in the group
            DuplicateActiveClaim: If the claimant already has a creating or active claim
        """
        if not is_valid_e164(request.wa_number_e164):
            raise ValidationError("wa_number_e164 must be an E.164 phone number")
        if not _USERNAME_PATTERN.match(request.username):
            raise ValidationError(
                "username must be 3-32 letters, digits, underscores or hyphens"
            )
        wa_jid = phone_to_jid(request.wa_number_e164)

        if self.is_privileged(wa_jid):
            _LOGGER.info(f"Privileged identity {wa_jid} bypasses the membership check")
        else:
            check = await self._check_member(wa_jid)
            if not check.is_member:
                raise NotAMember(f"{wa_jid} is not a member of the group")

        existing = await self.claim_store.find_active_by_jid(wa_jid)
        if existing:
            raise DuplicateActiveClaim(
                f"{wa_jid} already has a {existing.status.value} claim {existing.claim_id}"
            )

        claim_token = generate_claim_token()
        claim = await self.claim_store.create(
            ClaimInput(
                wa_jid=wa_jid,
                template=request.template,
                username=request.username,
                client_token_hash=hash_token(claim_token),
            )
        )
        _LOGGER.info(f"Created claim {claim.claim_id} for {wa_jid} ({claim.template})")
        try:
            await self.job_queue.enqueue_create(claim.claim_id)
        except Exception as e:
            await self._fail(claim.claim_id, classify(e))
            raise
        return SubmitResult(claim_id=claim.claim_id, claim_token=claim_token)

    async def _check_member(self, wa_jid: str):
        for attempt in range(1, self.membership_retries + 1):
            try:
                return await self.membership.check_member(wa_jid)
            except MembershipUnavailable:
                if attempt >= self.membership_retries:
                    raise
                _LOGGER.warning(
                    f"Membership check for {wa_jid} failed on attempt {attempt}, retrying"
                )
                await asyncio.sleep(self.membership_retry_delay * attempt)

    # Creation

    def get_template(self, name: str) -> ServerTemplate:
        template = self.templates.get(name)
        if template is None:
            raise EggInvalid(f"Template {name} not found")
        return template

    async def process_create(self, claim_id: str) -> ClaimRecord | None:
        """Provision the server for a claim. Safe to run again for the same claim: a
        claim which already left CREATING is skipped, and a claim which already has a
        server resumes at the install poll instead of allocating a second one."""
        claim = await self.claim_store.get_claim(claim_id)
        if claim is None:
            _LOGGER.error(f"Claim {claim_id} not found, nothing to create")
            return None
        if claim.status != ClaimStatus.CREATING:
            _LOGGER.info(f"Claim {claim_id} is already {claim.status.value}, skipping")
            return claim

        try:
            template = self.get_template(claim.template)
        except EggInvalid as e:
            _LOGGER.error(f"Claim {claim_id}: {e}")
            return await self._fail(claim_id, e.code)

        try:
            claim, panel_username, password = await self._allocate(claim, template)
            if not await self._wait_for_install(claim):
                return await self.claim_store.get_claim(claim_id)

            probe = await self.health_probe.check_server(
                claim.allocation_ip,
                claim.allocation_port,
                claim.allocation_alias,
                template.healthcheck,
            )
            if not probe.success:
                raise HealthcheckTimeout(probe.message)

            claim = await self._transition(
                claim, ClaimStatus.ACTIVE, {"last_healthcheck_at": self.clock()}
            )
            _LOGGER.info(f"Claim {claim_id} is active (server {claim.server_id})")
        except Exception as e:
            code = classify(e)
            _LOGGER.error(f"Create for claim {claim_id} failed ({code.value}): {e}")
            await self._fail(claim_id, code)
            raise

        await self._deliver_credentials(claim, panel_username, password)
        return await self._recheck_membership(claim)

    async def _recheck_membership(self, claim: ClaimRecord) -> ClaimRecord:
        """Leave events are ignored while a claim is creating, so a claimant who left in
        the meantime is only noticed here."""
        if self.is_privileged(claim.wa_jid):
            return claim
        try:
            check = await self._check_member(claim.wa_jid)
        except MembershipUnavailable as e:
            _LOGGER.warning(f"Could not recheck membership for claim {claim.claim_id}: {e}")
            return claim
        if check.is_member:
            return claim
        _LOGGER.info(f"{claim.wa_jid} left the group while claim {claim.claim_id} was creating")
        try:
            return await self.on_leave(claim.wa_jid) or claim
        except ConflictError as e:
            _LOGGER.warning(f"Could not schedule deletion of claim {claim.claim_id}: {e}")
            return claim

    async def _allocate(
        self, claim: ClaimRecord, template: ServerTemplate
    ) -> tuple[ClaimRecord, str, str]:
        username = claim.username or _default_username(claim.wa_jid)
        if claim.has_allocation:
            # A previous attempt got as far as creating the server
            _LOGGER.info(
                f"Claim {claim.claim_id} already has server {claim.server_id}, resuming"
            )
            result = await self.hosting.create_or_reuse_account(claim.wa_jid, username)
            return claim, result.account.username, result.password

        server_name = f"{username}-{claim.template}"
        result = await self.hosting.allocate_with_fallback(
            AllocationRequest(
                wa_jid=claim.wa_jid,
                username=username,
                template=template,
                server_name=server_name,
                description=f"Auto-claimed {claim.template} server for {username}",
            )
        )
        claim = await self.claim_store.update(
            claim.claim_id,
            {
                "user_id": result.account.id,
                "server_id": result.server.id,
                "allocation_id": result.allocation.id,
                "node_id": result.node_id,
                "allocation_ip": result.allocation.ip,
                "allocation_alias": result.allocation.alias,
                "allocation_port": result.allocation.port,
                "panel_url": self.hosting.get_panel_url(),
            },
            expected_status=ClaimStatus.CREATING,
        )
        if claim is None:
            raise ConflictError("Claim vanished while its server was being created")
        _LOGGER.info(
            f"Server {result.server.id} created for claim {claim.claim_id}, "
            "waiting for installation"
        )
        return claim, result.account.username, result.password

    async def _wait_for_install(self, claim: ClaimRecord) -> bool:
        """Poll until the server finished installing. Returns False if the claim was
        changed by someone else in the meantime.

        Raises:
            HealthcheckTimeout: If the server was suspended, failed to install or did
                not finish within the wait budget
        """
        max_checks = max(1, int(self.install_max_wait // self.install_poll_interval))
        for check in range(1, max_checks + 1):
            current = await self.claim_store.get_claim(claim.claim_id)
            if current is None or current.status != ClaimStatus.CREATING:
                _LOGGER.warning(
                    f"Claim {claim.claim_id} changed while installing, abandoning"
                )
                return False
            try:
                status = await self.hosting.get_server_status(claim.server_id)
            except HostingApiError as e:
                _LOGGER.error(
                    f"Error checking server {claim.server_id} (check {check}): {e}"
                )
            else:
                _LOGGER.debug(
                    f"Server {claim.server_id} status={status.status} "
                    f"suspended={status.suspended} installing={status.installing}"
                )
                if status.suspended:
                    raise HealthcheckTimeout("Server is suspended")
                if status.status == "install_failed":
                    raise HealthcheckTimeout("Server installation failed")
                if not status.installing and status.status in (None, "offline"):
                    return True
            if check < max_checks:
                await asyncio.sleep(self.install_poll_interval)
        raise HealthcheckTimeout(
            f"Installation timeout after {self.install_max_wait:g} seconds"
        )

    async def _deliver_credentials(self, claim: ClaimRecord, username: str, password: str):
        text = credentials_message(
            server_name=f"{username}-{claim.template}",
            panel_url=claim.panel_url or self.hosting.get_panel_url(),
            username=username,
            password=password,
            host=claim.allocation_alias or claim.allocation_ip,
            port=claim.allocation_port,
        )
        if not await self.messenger.send_message(claim.wa_jid, text):
            _LOGGER.warning(f"Credentials for claim {claim.claim_id} were not delivered")

    # Reclamation

    async def on_leave(self, wa_jid: str) -> ClaimRecord | None:
        claim = await self.claim_store.find_by_jid(
            wa_jid, [ClaimStatus.ACTIVE, ClaimStatus.CREATING]
        )
        if claim is None:
            _LOGGER.info(f"No active claim for leaving member {wa_jid}")
            return None
        if claim.status == ClaimStatus.CREATING:
            _LOGGER.info(
                f"Claim {claim.claim_id} is still creating, membership is rechecked "
                "once it is active"
            )
            return None

        job_id = await self.job_queue.enqueue_delete(claim.claim_id, self.grace_period_hours)
        scheduled_at = self.clock() + timedelta(hours=self.grace_period_hours)
        try:
            claim = await self._transition(
                claim,
                ClaimStatus.DELETING,
                {"delete_job_id": job_id, "deletion_scheduled_at": scheduled_at},
            )
        except ConflictError:
            await self.job_queue.cancel(job_id)
            raise
        _LOGGER.info(
            f"Claim {claim.claim_id} scheduled for deletion at {scheduled_at.isoformat()}"
        )
        await self.messenger.send_message(
            wa_jid, deletion_warning_message(self.grace_period_hours, scheduled_at)
        )
        return claim

    async def on_join(self, wa_jid: str) -> ClaimRecord | None:
        claim = await self.claim_store.find_by_jid(wa_jid, [ClaimStatus.DELETING])
        if claim is None:
            _LOGGER.info(f"No scheduled deletion for joining member {wa_jid}")
            return None

        other = await self.claim_store.find_active_by_jid(wa_jid)
        if other is not None:
            _LOGGER.warning(
                f"{wa_jid} has a newer {other.status.value} claim {other.claim_id}, "
                f"deletion of claim {claim.claim_id} goes ahead"
            )
            return claim

        if claim.delete_job_id is None or not await self.job_queue.cancel(
            claim.delete_job_id
        ):
            _LOGGER.warning(
                f"Could not cancel delete job {claim.delete_job_id} for claim "
                f"{claim.claim_id}, deletion is already underway"
            )
            return claim

        try:
            claim = await self._transition(
                claim,
                ClaimStatus.ACTIVE,
                {"delete_job_id": None, "deletion_scheduled_at": None},
            )
        except ConflictError:
            await self._reschedule_delete(claim)
            raise
        _LOGGER.info(f"Deletion of claim {claim.claim_id} cancelled")
        await self.messenger.send_message(wa_jid, deletion_cancelled_message())
        return claim

    async def _reschedule_delete(self, claim: ClaimRecord) -> None:
        """Put back the delete job of a claim left DELETING after its job was cancelled"""
        delay_hours = 0.0
        if claim.deletion_scheduled_at is not None:
            remaining = claim.deletion_scheduled_at - self.clock()
            delay_hours = max(remaining.total_seconds() / 3600, 0.0)
        job_id = await self.job_queue.enqueue_delete(claim.claim_id, delay_hours)
        try:
            updated = await self.claim_store.update(
                claim.claim_id,
                {"delete_job_id": job_id},
                expected_status=ClaimStatus.DELETING,
            )
        except ConflictError:
            updated = None
        if updated is None:
            await self.job_queue.cancel(job_id)
            _LOGGER.warning(f"Claim {claim.claim_id} changed, delete job not rescheduled")
            return
        _LOGGER.warning(f"Delete job for claim {claim.claim_id} rescheduled as {job_id}")

    async def process_delete(self, claim_id: str) -> ClaimRecord | None:
        claim = await self.claim_store.get_claim(claim_id)
        if claim is None:
            _LOGGER.warning(f"Claim {claim_id} not found for deletion")
            return None
        if claim.status != ClaimStatus.DELETING:
            _LOGGER.info(f"Claim {claim_id} is {claim.status.value}, not deleting")
            return claim

        try:
            if claim.server_id is not None:
                await self.hosting.delete_server(claim.server_id)
            if claim.user_id is not None:
                await self.hosting.delete_account_if_empty(claim.user_id)
            claim = await self._transition(
                claim,
                ClaimStatus.DELETED,
                {"delete_job_id": None, "deletion_scheduled_at": None},
            )
        except Exception as e:
            code = classify(e)
            _LOGGER.error(f"Delete for claim {claim_id} failed ({code.value}): {e}")
            await self.notifier.notify_failure(
                claim, code, f"Deletion failed: {get_failure_reason(code)}"
            )
            raise
        _LOGGER.info(f"Claim {claim_id} deleted")
        return claim

    # Queries and events

    async def get_status(
        self, claim_id: str, client_token: str | None = None
    ) -> ClaimStatusView | None:
        """
        Raises:
            InvalidClaimToken: If tokens are required and the one given does not match
        """
        claim = await self.claim_store.get_claim(claim_id)
        if claim is None:
            return None
        if self.require_client_token:
            if (
                not client_token
                or not claim.client_token_hash
                or not verify_token(client_token, claim.client_token_hash)
            ):
                raise InvalidClaimToken(f"Invalid token for claim {claim_id}")

        message = STATUS_MESSAGES[claim.status]
        if claim.status == ClaimStatus.FAILED and claim.failure_reason:
            message = claim.failure_reason
        server_details = None
        if claim.status == ClaimStatus.ACTIVE and claim.panel_url:
            server_details = ServerDetails(panel_url=claim.panel_url, username=claim.username)
        return ClaimStatusView(
            claim_id=claim.claim_id,
            status=claim.status,
            message=message,
            created_at=claim.created_at,
            updated_at=claim.updated_at,
            failure_code=claim.failure_code,
            deletion_scheduled_at=claim.deletion_scheduled_at,
            server_details=server_details,
        )

    async def on_membership_event(self, event: MembershipEvent) -> ClaimRecord | None:
        if not is_valid_jid(event.wa_jid) or not is_valid_group_id(event.group_id):
            raise ValidationError(
                f"Malformed membership event for {event.wa_jid} in {event.group_id}"
            )
        _LOGGER.info(f"Membership event {event.action.value} for {event.wa_jid}")
        if event.action == MembershipAction.LEAVE:
            return await self.on_leave(event.wa_jid)
        return await self.on_join(event.wa_jid)

    # State changes

    async def _transition(
        self, claim: ClaimRecord, target: ClaimStatus, changes: dict[str, Any] | None = None
    ) -> ClaimRecord:
        if not can_transition(claim.status, target):
            raise InvalidTransition(
                f"Claim {claim.claim_id} cannot go from {claim.status.value} to {target.value}"
            )
        if target == ClaimStatus.ACTIVE and claim.server_id is None:
            raise InvalidTransition(f"Claim {claim.claim_id} has no server to activate")
        updated = await self.claim_store.update(
            claim.claim_id,
            {**(changes or {}), "status": target},
            expected_status=claim.status,
        )
        if updated is None:
            raise ConflictError(f"Claim {claim.claim_id} vanished")
        return updated

    async def _fail(self, claim_id: str, code: FailureCode) -> ClaimRecord | None:
        reason = get_failure_reason(code)
        try:
            claim = await self.claim_store.update(
                claim_id,
                {
                    "status": ClaimStatus.FAILED,
                    "failure_code": code,
                    "failure_reason": reason,
                },
                expected_status=ClaimStatus.CREATING,
            )
        except ConflictError as e:
            _LOGGER.warning(f"Claim {claim_id} could not be marked failed: {e}")
            return await self.claim_store.get_claim(claim_id)
        if claim is None:
            return None
        _LOGGER.error(f"Claim {claim_id} failed: {code.value}")
        await self.notifier.notify_failure(claim, code, reason)
        return claim


def _default_username(wa_jid: str) -> str:
    return "user" + wa_jid.split("@", 1)[0][-8:]
