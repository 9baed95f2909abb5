from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from claimy.claim_status import ClaimStatus
from claimy.failure_code import FailureCode
from claimy.membership.membership_port import MembershipAction, MembershipEvent


class ClaimBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=3, max_length=32, pattern=r"^[a-zA-Z0-9_-]+$")
    wa_number_e164: str = Field(pattern=r"^\+[1-9]\d{1,14}$")
    template: str


class ClaimAccepted(BaseModel):
    claim_id: str
    claim_token: str


class ServerDetailsResponse(BaseModel):
    panel_url: str | None
    username: str | None


class ClaimStatusResponse(BaseModel):
    claim_id: str
    status: ClaimStatus
    message: str
    created_at: datetime
    updated_at: datetime
    failure_code: FailureCode | None = None
    deletion_scheduled_at: datetime | None = None
    server_details: ServerDetailsResponse | None = None


class WebhookPayload(BaseModel):
    """Membership event posted by the bot"""

    model_config = ConfigDict(extra="forbid")

    action: Literal["join", "leave"]
    wa_jid: str = Field(pattern=r"^\d+@s\.whatsapp\.net$")
    group_id: str = Field(pattern=r"^\d+@g\.us$")
    timestamp: datetime

    def to_event(self) -> MembershipEvent:
        return MembershipEvent(
            action=MembershipAction(self.action),
            wa_jid=self.wa_jid,
            group_id=self.group_id,
            timestamp=self.timestamp,
        )


class ClaimStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    active_servers: int


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    stats: ClaimStatsResponse
