import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
import logging
import os
from pathlib import Path
import time
from typing import Any, AsyncIterator, Iterable, Optional

from claimy.claim_record import ClaimInput, ClaimRecord
from claimy.claim_status import ACTIVE_STATUSES, ClaimStatus
from claimy.claim_store import ClaimStore, apply_update, matches, new_claim_record, paginate
from claimy.claimy_error import ClaimyError, DuplicateActiveClaim
from claimy.page import Page
from claimy.serializers.pydantic_serializer import PydanticSerializer
from claimy.serializers.serializer import Serializer

_LOGGER = logging.getLogger(__name__)


def _default_serializer() -> Serializer[list[ClaimRecord]]:
    return PydanticSerializer.for_type(list[ClaimRecord])


@dataclass
class FilesystemClaimStore(ClaimStore):
    """Claim store keeping every record in a single JSON document. Writers take an
    exclusive lock file, so several processes may share the same data directory."""

    root_dir: Path
    serializer: Serializer[list[ClaimRecord]] = field(default_factory=_default_serializer)
    stale_lock_seconds: float = 10
    lock_retries: int = 100
    lock_retry_delay: float = 0.05
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _entered: bool = field(default=False, init=False)

    def __post_init__(self):
        self.root_dir = Path(self.root_dir)
        self.claims_file = self.root_dir / "claims.json"
        self.lock_file = self.root_dir / "claims.json.lock"

    def _check_entered(self) -> None:
        if not self._entered:
            raise ClaimyError(
                "ClaimStore must be entered using async context manager before use"
            )

    async def __aenter__(self):
        self.root_dir.mkdir(parents=True, exist_ok=True)
        if not self.claims_file.exists():
            async with self._locked():
                if not self.claims_file.exists():
                    self._write([])
                    _LOGGER.info(f"Initialized claims file at {self.claims_file}")
        self._entered = True
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self._entered = False

    async def create(self, claim_input: ClaimInput) -> ClaimRecord:
        self._check_entered()
        async with self._locked():
            claims = self._read()
            for claim in claims:
                if claim.wa_jid == claim_input.wa_jid and claim.status in ACTIVE_STATUSES:
                    raise DuplicateActiveClaim(
                        f"{claim_input.wa_jid} already has an active claim"
                    )
            claim = new_claim_record(claim_input)
            claims.append(claim)
            self._write(claims)
            return claim

    async def get_claim(self, claim_id: str) -> ClaimRecord | None:
        self._check_entered()
        for claim in self._read():
            if claim.claim_id == claim_id:
                return claim
        return None

    async def find_by_jid(
        self, wa_jid: str, statuses: Iterable[ClaimStatus] | None = None
    ) -> ClaimRecord | None:
        self._check_entered()
        statuses = set(statuses) if statuses is not None else None
        result = None
        for claim in self._read():
            if claim.wa_jid != wa_jid:
                continue
            if statuses is not None and claim.status not in statuses:
                continue
            if result is None or claim.created_at >= result.created_at:
                result = claim
        return result

    async def update(
        self,
        claim_id: str,
        changes: dict[str, Any],
        expected_status: ClaimStatus | None = None,
    ) -> ClaimRecord | None:
        self._check_entered()
        async with self._locked():
            claims = self._read()
            for index, claim in enumerate(claims):
                if claim.claim_id == claim_id:
                    break
            else:
                return None
            updated = apply_update(claim, changes, expected_status)
            if updated.status in ACTIVE_STATUSES:
                for other in claims:
                    if (
                        other.claim_id != claim_id
                        and other.wa_jid == updated.wa_jid
                        and other.status in ACTIVE_STATUSES
                    ):
                        raise DuplicateActiveClaim(
                            f"{updated.wa_jid} already has an active claim"
                        )
            claims[index] = updated
            self._write(claims)
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
            for claim in self._read()
            if matches(claim, status__eq, wa_jid__eq, created_at__lte)
        ]
        items.sort(key=lambda claim: claim.created_at)
        return paginate(items, page_id, limit)

    async def delete_claims(self, claim_ids: list[str]) -> int:
        self._check_entered()
        ids = set(claim_ids)
        async with self._locked():
            claims = self._read()
            kept = [claim for claim in claims if claim.claim_id not in ids]
            removed = len(claims) - len(kept)
            if removed:
                self._write(kept)
            return removed

    def _read(self) -> list[ClaimRecord]:
        try:
            with open(self.claims_file, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return []
        if not data.strip():
            return []
        return list(self.serializer.deserialize(data))

    def _write(self, claims: list[ClaimRecord]):
        tmp_file = self.claims_file.with_name(
            f"{self.claims_file.name}.{os.getpid()}.tmp"
        )
        with open(tmp_file, "wb") as f:
            f.write(self.serializer.serialize(claims))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, self.claims_file)

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[None]:
        async with self._lock:
            await self._acquire_lock_file()
            try:
                yield
            finally:
                self.lock_file.unlink(missing_ok=True)

    async def _acquire_lock_file(self):
        for _ in range(self.lock_retries):
            try:
                with open(self.lock_file, "xb") as f:
                    f.write(str(os.getpid()).encode())
                return
            except FileExistsError:
                self._break_stale_lock()
            await asyncio.sleep(self.lock_retry_delay)
        raise ClaimyError(f"Could not lock {self.claims_file}")

    def _break_stale_lock(self):
        try:
            age = time.time() - self.lock_file.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.stale_lock_seconds:
            _LOGGER.warning(f"Breaking stale lock {self.lock_file} ({age:.1f}s old)")
            self.lock_file.unlink(missing_ok=True)
