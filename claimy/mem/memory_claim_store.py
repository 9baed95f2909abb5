import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from claimy.claim_record import ClaimInput, ClaimRecord
from claimy.claim_status import ACTIVE_STATUSES, ClaimStatus
from claimy.claim_store import ClaimStore, apply_update, matches, new_claim_record, paginate
from claimy.claimy_error import ClaimyError, DuplicateActiveClaim
from claimy.page import Page


@dataclass
class MemoryClaimStore(ClaimStore):
    """In-memory claim store. Mutations are serialized by a single lock."""

    _claims: dict[str, ClaimRecord] = field(default_factory=dict, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _entered: bool = field(default=False, init=False)

    def _check_entered(self) -> None:
        if not self._entered:
            raise ClaimyError(
                "ClaimStore must be entered using async context manager before use"
            )

    async def __aenter__(self):
        self._entered = True
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self._entered = False

    async def create(self, claim_input: ClaimInput) -> ClaimRecord:
        self._check_entered()
        async with self._lock:
            if self._find_active(claim_input.wa_jid):
                raise DuplicateActiveClaim(
                    f"{claim_input.wa_jid} already has an active claim"
                )
            claim = new_claim_record(claim_input)
            self._claims[claim.claim_id] = claim
            return claim

    async def get_claim(self, claim_id: str) -> ClaimRecord | None:
        self._check_entered()
        return self._claims.get(claim_id)

    async def find_by_jid(
        self, wa_jid: str, statuses: Iterable[ClaimStatus] | None = None
    ) -> ClaimRecord | None:
        self._check_entered()
        statuses = set(statuses) if statuses is not None else None
        candidates = [
            claim
            for claim in self._claims.values()
            if claim.wa_jid == wa_jid and (statuses is None or claim.status in statuses)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda claim: claim.created_at)

    async def update(
        self,
        claim_id: str,
        changes: dict[str, Any],
        expected_status: ClaimStatus | None = None,
    ) -> ClaimRecord | None:
        self._check_entered()
        async with self._lock:
            claim = self._claims.get(claim_id)
            if claim is None:
                return None
            updated = apply_update(claim, changes, expected_status)
            if updated.status in ACTIVE_STATUSES:
                existing = self._find_active(updated.wa_jid)
                if existing and existing.claim_id != claim_id:
                    raise DuplicateActiveClaim(
                        f"{updated.wa_jid} already has an active claim"
                    )
            self._claims[claim_id] = updated
            return updated

    async def search_claims(
        self,
        page_id: Optional[str] = None,
        limit: int = 100,
        status__eq: Optional[ClaimStatus] = None,
        wa_jid__eq: Optional[str] = None,
        created_at__lte: Optional[datetime] = None,
    ) -> Page[ClaimRecord]:
        self._check_entered()
        items = [
            claim
            for claim in self._claims.values()
            if matches(claim, status__eq, wa_jid__eq, created_at__lte)
        ]
        items.sort(key=lambda claim: claim.created_at)
        return paginate(items, page_id, limit)

    async def delete_claims(self, claim_ids: list[str]) -> int:
        self._check_entered()
        async with self._lock:
            removed = 0
            for claim_id in claim_ids:
                if self._claims.pop(claim_id, None) is not None:
                    removed += 1
            return removed

    def _find_active(self, wa_jid: str) -> ClaimRecord | None:
        for claim in self._claims.values():
            if claim.wa_jid == wa_jid and claim.status in ACTIVE_STATUSES:
                return claim
        return None
