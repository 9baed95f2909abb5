from abc import ABC, abstractmethod
from dataclasses import fields, replace
from datetime import UTC, datetime, timedelta
import logging
from typing import Any, Iterable, Optional
from uuid import uuid4

from claimy.claim_record import ClaimInput, ClaimRecord, ClaimStats
from claimy.claim_status import ACTIVE_STATUSES, TERMINAL_STATUSES, ClaimStatus
from claimy.claimy_error import ConflictError, ValidationError
from claimy.page import Page

_LOGGER = logging.getLogger(__name__)
_IMMUTABLE_FIELDS = frozenset({"claim_id", "wa_jid", "template", "username", "created_at"})
_FIELD_NAMES = frozenset(f.name for f in fields(ClaimRecord))


class ClaimStore(ABC):
    """Durable repository of claim records. The store is the single source of truth for
    claim state: every mutation is atomic with respect to every other mutation, and
    the one active claim per JID rule is enforced at write time."""

    @abstractmethod
    async def __aenter__(self):
        """Open this store"""

    @abstractmethod
    async def __aexit__(self, exc_type, exc_value, traceback):
        """Close this store"""

    @abstractmethod
    async def create(self, claim_input: ClaimInput) -> ClaimRecord:
        """Create a claim in the CREATING status.

        Raises:
            ConflictError: If the JID already has a claim which is creating or active
        """

    @abstractmethod
    async def get_claim(self, claim_id: str) -> ClaimRecord | None:
        """Get a claim given its id, or None if there is no such claim"""

    @abstractmethod
    async def find_by_jid(
        self, wa_jid: str, statuses: Iterable[ClaimStatus] | None = None
    ) -> ClaimRecord | None:
        """Get the most recently created claim for the JID given, optionally restricted
        to a set of statuses"""

    async def find_active_by_jid(self, wa_jid: str) -> ClaimRecord | None:
        """Get the claim for the JID which is creating or active"""
        return await self.find_by_jid(wa_jid, ACTIVE_STATUSES)

    @abstractmethod
    async def update(
        self,
        claim_id: str,
        changes: dict[str, Any],
        expected_status: ClaimStatus | None = None,
    ) -> ClaimRecord | None:
        """Merge changes into a claim and bump its updated_at.

        Args:
            claim_id: The id of the claim to update
            changes: Field values to set. None clears an optional field.
            expected_status: If given, the update only applies while the claim has this status

        Returns:
            The updated claim, or None if there is no such claim

        Raises:
            ConflictError: If expected_status was given and does not match, or the
                update would give the JID a second active claim
        """

    @abstractmethod
    async def search_claims(
        self,
        page_id: Optional[str] = None,
        limit: int = 100,
        status__eq: Optional[ClaimStatus] = None,
        wa_jid__eq: Optional[str] = None,
        created_at__lte: Optional[datetime] = None,
    ) -> Page[ClaimRecord]:
        """Search claims ordered by creation time"""

    @abstractmethod
    async def delete_claims(self, claim_ids: list[str]) -> int:
        """Physically remove claims. Only used by the retention policy."""

    async def count_claims(
        self,
        status__eq: Optional[ClaimStatus] = None,
        wa_jid__eq: Optional[str] = None,
    ) -> int:
        count = 0
        page_id = None
        while True:
            page = await self.search_claims(
                page_id=page_id, status__eq=status__eq, wa_jid__eq=wa_jid__eq
            )
            count += len(page.items)
            page_id = page.next_page_id
            if page_id is None:
                break
        return count

    async def get_stats(self) -> ClaimStats:
        by_status = {status.value: 0 for status in ClaimStatus}
        total = 0
        page_id = None
        while True:
            page = await self.search_claims(page_id=page_id)
            for claim in page.items:
                by_status[claim.status.value] += 1
                total += 1
            page_id = page.next_page_id
            if page_id is None:
                break
        return ClaimStats(
            total=total,
            by_status=by_status,
            active_servers=by_status[ClaimStatus.ACTIVE.value],
        )

    async def cleanup_old_claims(self, older_than_days: int = 30) -> int:
        """Remove terminal claims created before the cutoff. Returns the number removed."""
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        claim_ids = []
        for status in TERMINAL_STATUSES:
            page_id = None
            while True:
                page = await self.search_claims(
                    page_id=page_id, status__eq=status, created_at__lte=cutoff
                )
                claim_ids.extend(claim.claim_id for claim in page.items)
                page_id = page.next_page_id
                if page_id is None:
                    break
        if not claim_ids:
            return 0
        removed = await self.delete_claims(claim_ids)
        _LOGGER.info(f"Cleaned up {removed} claims older than {older_than_days} days")
        return removed


def new_claim_record(claim_input: ClaimInput) -> ClaimRecord:
    now = datetime.now(UTC)
    return ClaimRecord(
        claim_id=str(uuid4()),
        wa_jid=claim_input.wa_jid,
        template=claim_input.template,
        username=claim_input.username,
        client_token_hash=claim_input.client_token_hash,
        status=ClaimStatus.CREATING,
        created_at=now,
        updated_at=now,
        last_event_at=now,
    )


def apply_update(
    claim: ClaimRecord,
    changes: dict[str, Any],
    expected_status: ClaimStatus | None = None,
) -> ClaimRecord:
    """Build the updated version of a claim. Shared by all store implementations."""
    if expected_status is not None and claim.status != expected_status:
        raise ConflictError(
            f"Claim {claim.claim_id} is {claim.status.value}, expected {expected_status.value}"
        )
    unknown = set(changes) - _FIELD_NAMES
    if unknown:
        raise ValidationError(f"Unknown claim fields: {sorted(unknown)}")
    immutable = set(changes) & _IMMUTABLE_FIELDS
    if immutable:
        raise ValidationError(f"Immutable claim fields: {sorted(immutable)}")
    now = datetime.now(UTC)
    changes = dict(changes)
    if "status" in changes and changes["status"] != claim.status:
        changes.setdefault("last_event_at", now)
    changes["updated_at"] = now
    return replace(claim, **changes)


def matches(
    claim: ClaimRecord,
    status__eq: Optional[ClaimStatus] = None,
    wa_jid__eq: Optional[str] = None,
    created_at__lte: Optional[datetime] = None,
) -> bool:
    if status__eq is not None and claim.status != status__eq:
        return False
    if wa_jid__eq is not None and claim.wa_jid != wa_jid__eq:
        return False
    if created_at__lte is not None and claim.created_at > created_at__lte:
        return False
    return True


def paginate(items: list[ClaimRecord], page_id: Optional[str], limit: int) -> Page[ClaimRecord]:
    start_index = 0
    if page_id:
        try:
            start_index = int(page_id)
        except ValueError:
            start_index = 0
    end_index = start_index + limit
    next_page_id = None
    if end_index < len(items):
        next_page_id = str(end_index)
    return Page(items=items[start_index:end_index], next_page_id=next_page_id)
