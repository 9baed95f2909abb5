"""SQL-based claim store implementation."""

from dataclasses import dataclass, field, fields
from datetime import datetime
import logging
from typing import Any, Iterable, Optional

try:
    from sqlalchemy import delete, select, update
    from sqlalchemy.exc import IntegrityError
    from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
except ImportError as e:
    raise ImportError(
        "SQLAlchemy is required for the SQL claim store. Install with: pip install claimy[sql]"
    ) from e

from claimy.claim_record import ClaimInput, ClaimRecord
from claimy.claim_status import ACTIVE_STATUSES, ClaimStatus
from claimy.claim_store import ClaimStore, apply_update, new_claim_record
from claimy.claimy_error import ClaimyError, ConflictError, DuplicateActiveClaim
from claimy.failure_code import FailureCode
from claimy.page import Page
from claimy.sql.models import Base, SqlClaim

_LOGGER = logging.getLogger(__name__)
_RECORD_FIELDS = [f.name for f in fields(ClaimRecord)]


def _to_values(claim: ClaimRecord) -> dict[str, Any]:
    values = {name: getattr(claim, name) for name in _RECORD_FIELDS}
    values["status"] = claim.status.value
    values["failure_code"] = claim.failure_code.value if claim.failure_code else None
    values["active_jid"] = claim.wa_jid if claim.status in ACTIVE_STATUSES else None
    return values


def _from_row(row: SqlClaim) -> ClaimRecord:
    values = {name: getattr(row, name) for name in _RECORD_FIELDS}
    values["status"] = ClaimStatus(row.status)
    values["failure_code"] = FailureCode(row.failure_code) if row.failure_code else None
    return ClaimRecord(**values)


@dataclass
class SqlClaimStore(ClaimStore):
    """
    Claim store backed by a relational database through SQLAlchemy.

    The one active claim per JID rule is a unique constraint on the active_jid
    column, so it holds across every process sharing the database. Compare and
    set updates use a version column.
    """

    database_url: str
    max_update_attempts: int = 5
    running: bool = field(default=False, init=False)
    _engine: Optional[AsyncEngine] = field(default=None, init=False)
    _session_factory: Optional[async_sessionmaker] = field(default=None, init=False)

    def __post_init__(self):
        self._engine = create_async_engine(self.database_url)
        self._session_factory = async_sessionmaker(bind=self._engine, expire_on_commit=False)

    def _check_running(self):
        if not self.running:
            raise ClaimyError("ClaimStore is not running. Call __aenter__ first.")

    async def __aenter__(self):
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.running = True
        _LOGGER.info("Started SqlClaimStore")
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        self.running = False
        if self._engine:
            await self._engine.dispose()
        _LOGGER.info("Stopped SqlClaimStore")

    async def create(self, claim_input: ClaimInput) -> ClaimRecord:
        self._check_running()
        claim = new_claim_record(claim_input)
        try:
            async with self._session_factory() as session:
                session.add(SqlClaim(**_to_values(claim), version=1))
                await session.commit()
        except IntegrityError as e:
            raise DuplicateActiveClaim(
                f"{claim_input.wa_jid} already has an active claim"
            ) from e
        return claim

    async def get_claim(self, claim_id: str) -> ClaimRecord | None:
        self._check_running()
        async with self._session_factory() as session:
            row = await session.get(SqlClaim, claim_id)
            return _from_row(row) if row else None

    async def find_by_jid(
        self, wa_jid: str, statuses: Iterable[ClaimStatus] | None = None
    ) -> ClaimRecord | None:
        self._check_running()
        query = select(SqlClaim).where(SqlClaim.wa_jid == wa_jid)
        if statuses is not None:
            query = query.where(SqlClaim.status.in_([s.value for s in statuses]))
        query = query.order_by(SqlClaim.created_at.desc()).limit(1)
        async with self._session_factory() as session:
            row = (await session.execute(query)).scalars().first()
            return _from_row(row) if row else None

    async def update(
        self,
        claim_id: str,
        changes: dict[str, Any],
        expected_status: ClaimStatus | None = None,
    ) -> ClaimRecord | None:
        self._check_running()
        for _ in range(self.max_update_attempts):
            async with self._session_factory() as session:
                row = await session.get(SqlClaim, claim_id)
                if row is None:
                    return None
                version = row.version
                updated = apply_update(_from_row(row), changes, expected_status)
                values = _to_values(updated)
                del values["claim_id"]
                try:
                    result = await session.execute(
                        update(SqlClaim)
                        .where(SqlClaim.claim_id == claim_id, SqlClaim.version == version)
                        .values(**values, version=version + 1)
                    )
                    await session.commit()
                except IntegrityError as e:
                    raise DuplicateActiveClaim(
                        f"{updated.wa_jid} already has an active claim"
                    ) from e
                if result.rowcount == 1:
                    return updated
            _LOGGER.debug(f"Concurrent update of claim {claim_id}, retrying")
        raise ConflictError(f"Claim {claim_id} is being updated concurrently")

    async def search_claims(
        self,
        page_id: Optional[str] = None,
        limit: int = 100,
        status__eq: Optional[ClaimStatus] = None,
        wa_jid__eq: Optional[str] = None,
        created_at__lte: Optional[datetime] = None,
    ) -> Page[ClaimRecord]:
        self._check_running()
        query = select(SqlClaim)
        if status__eq is not None:
            query = query.where(SqlClaim.status == status__eq.value)
        if wa_jid__eq is not None:
            query = query.where(SqlClaim.wa_jid == wa_jid__eq)
        if created_at__lte is not None:
            query = query.where(SqlClaim.created_at <= created_at__lte)

        offset = 0
        if page_id:
            try:
                offset = int(page_id)
            except ValueError:
                offset = 0
        query = (
            query.order_by(SqlClaim.created_at, SqlClaim.claim_id)
            .offset(offset)
            .limit(limit + 1)
        )
        async with self._session_factory() as session:
            rows = list((await session.execute(query)).scalars().all())
        next_page_id = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_page_id = str(offset + limit)
        return Page(items=[_from_row(row) for row in rows], next_page_id=next_page_id)

    async def delete_claims(self, claim_ids: list[str]) -> int:
        self._check_running()
        if not claim_ids:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SqlClaim).where(SqlClaim.claim_id.in_(claim_ids))
            )
            await session.commit()
            return result.rowcount
