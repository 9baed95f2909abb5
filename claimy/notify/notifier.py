from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import logging
from typing import Any

import httpx

from claimy.claim_record import ClaimRecord
from claimy.failure_code import FailureCode
from claimy.formatting import mask_jid
from claimy.serializers.json_serializer import JsonSerializer
from claimy.serializers.serializer import Serializer

_LOGGER = logging.getLogger(__name__)

FAILURE_COLORS = {
    FailureCode.NO_ALLOC: 0xFF9900,
    FailureCode.NODE_FULL: 0xFF9900,
    FailureCode.API_DOWN: 0xFF0000,
    FailureCode.BOT_TIMEOUT: 0xFF0000,
    FailureCode.EGG_INVALID: 0xFFFF00,
    FailureCode.USER_EXISTS: 0xFFFF00,
    FailureCode.HEALTHCHECK_TIMEOUT: 0xFF6600,
}
UNKNOWN_COLOR = 0x999999
FAILED_JOBS_ALERT_THRESHOLD = 10


class AlertLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


LEVEL_COLORS = {
    AlertLevel.INFO: 0x00FF00,
    AlertLevel.WARNING: 0xFF9900,
    AlertLevel.ERROR: 0xFF0000,
}


@dataclass
class AlertField:
    name: str
    value: str
    inline: bool = True


class NotifierPort(ABC):
    """Fire and forget alerting. Implementations log and swallow delivery errors."""

    @abstractmethod
    async def send(self, level: AlertLevel, title: str, fields: list[AlertField], color: int):
        """Deliver an alert"""

    async def notify(
        self,
        level: AlertLevel,
        title: str,
        message: str,
        fields: dict[str, Any] | None = None,
    ) -> None:
        alert_fields = [
            AlertField("Message", message, inline=False),
            AlertField("Timestamp", datetime.now(UTC).isoformat()),
        ]
        for key, value in (fields or {}).items():
            alert_fields.append(AlertField(key, str(value)))
        await self.send(level, title, alert_fields, LEVEL_COLORS[level])

    async def notify_failure(
        self, claim: ClaimRecord, failure_code: FailureCode, failure_reason: str
    ) -> None:
        alert_fields = [
            AlertField("Claim ID", claim.claim_id),
            AlertField("WA JID", mask_jid(claim.wa_jid)),
            AlertField("Error Code", failure_code.value),
            AlertField("Error Reason", failure_reason, inline=False),
            AlertField("Timestamp", datetime.now(UTC).isoformat()),
            AlertField("Template", claim.template),
        ]
        if claim.node_id is not None:
            alert_fields.append(AlertField("Node ID", str(claim.node_id)))
        if claim.allocation_id is not None:
            alert_fields.append(AlertField("Allocation ID", str(claim.allocation_id)))
        await self.send(
            AlertLevel.ERROR,
            f"Claim Failed ({failure_code.value})",
            alert_fields,
            FAILURE_COLORS.get(failure_code, UNKNOWN_COLOR),
        )

    async def notify_queue_stats(self, failed: int, stats: dict[str, Any]) -> bool:
        """Warn when too many jobs have failed. Returns True if an alert was sent."""
        if failed <= FAILED_JOBS_ALERT_THRESHOLD:
            return False
        await self.notify(
            AlertLevel.WARNING,
            "High Queue Failure Rate",
            f"Queue has {failed} failed jobs",
            stats,
        )
        return True


class LoggingNotifier(NotifierPort):
    """Notifier used when no webhook is configured"""

    async def send(self, level: AlertLevel, title: str, fields: list[AlertField], color: int):
        details = ", ".join(f"{f.name}={f.value}" for f in fields)
        if level == AlertLevel.ERROR:
            _LOGGER.error(f"{title}: {details}")
        elif level == AlertLevel.WARNING:
            _LOGGER.warning(f"{title}: {details}")
        else:
            _LOGGER.info(f"{title}: {details}")


@dataclass
class WebhookNotifier(NotifierPort):
    """Posts alerts to a Discord webhook, or a Slack one when Discord is not configured"""

    discord_webhook_url: str | None = None
    slack_webhook_url: str | None = None
    alert_env: str = "production"
    footer: str = "Claimy Alert System"
    timeout: float = 10.0
    serializer: Serializer[dict] = field(default_factory=JsonSerializer)
    transport: httpx.AsyncBaseTransport | None = None

    def __post_init__(self):
        if not self.discord_webhook_url and not self.slack_webhook_url:
            raise ValueError("A Discord or Slack webhook url is required")

    def build_discord_payload(
        self, title: str, fields: list[AlertField], color: int
    ) -> dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": title,
                    "fields": [
                        {"name": f.name, "value": f.value, "inline": f.inline}
                        for f in fields
                    ],
                    "color": color,
                    "timestamp": datetime.now(UTC).isoformat(),
                    "footer": {"text": self.footer},
                }
            ]
        }

    def build_slack_payload(
        self, title: str, fields: list[AlertField], color: int
    ) -> dict[str, Any]:
        return {
            "attachments": [
                {
                    "color": "danger" if color == 0xFF0000 else "warning",
                    "title": title,
                    "fields": [
                        {"title": f.name, "value": f.value, "short": f.inline}
                        for f in fields
                    ],
                    "ts": int(datetime.now(UTC).timestamp()),
                    "footer": self.footer,
                }
            ]
        }

    async def send(self, level: AlertLevel, title: str, fields: list[AlertField], color: int):
        title = f"[{self.alert_env}] {title}"
        if self.discord_webhook_url:
            url = self.discord_webhook_url
            payload = self.build_discord_payload(title, fields, color)
        else:
            url = self.slack_webhook_url
            payload = self.build_slack_payload(title, fields, color)
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    url,
                    content=self.serializer.serialize(payload),
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
            _LOGGER.info(f"Alert sent: {title}")
        except httpx.HTTPError as e:
            _LOGGER.error(f"Failed to send alert {title}: {e}")
        except Exception as e:
            _LOGGER.error(f"Failed to send alert {title}: {e}", exc_info=True)
