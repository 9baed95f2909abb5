from dataclasses import dataclass, field
from datetime import UTC, datetime

from claimy.claim_status import ClaimStatus
from claimy.failure_code import FailureCode


@dataclass(frozen=True)
class ClaimInput:
    """Data required to create a claim"""

    wa_jid: str
    template: str
    username: str | None = None
    client_token_hash: str | None = None


@dataclass(frozen=True)
class ClaimRecord:
    """One claim attempt. Records are never removed by the orchestrator - DELETED is a status."""

    claim_id: str
    wa_jid: str
    template: str
    status: ClaimStatus = ClaimStatus.CREATING
    username: str | None = None

    # Hosting control plane identifiers - written once when allocation succeeds
    user_id: int | None = None
    server_id: int | None = None
    allocation_id: int | None = None
    node_id: int | None = None
    allocation_ip: str | None = None
    allocation_alias: str | None = None
    allocation_port: int | None = None
    panel_url: str | None = None

    # Present only while DELETING
    delete_job_id: str | None = None
    deletion_scheduled_at: datetime | None = None

    # Present only once FAILED
    failure_code: FailureCode | None = None
    failure_reason: str | None = None

    client_token_hash: str | None = None

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_event_at: datetime | None = None
    last_healthcheck_at: datetime | None = None

    @property
    def has_allocation(self) -> bool:
        return self.server_id is not None


@dataclass
class ClaimStats:
    total: int
    by_status: dict[str, int]
    active_servers: int
