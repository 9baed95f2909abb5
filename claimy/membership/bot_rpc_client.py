from dataclasses import dataclass, field
import logging

import httpx

from claimy.claimy_error import BotTimeout
from claimy.membership.membership_port import MemberCheck, MembershipPort, MessengerPort

_LOGGER = logging.getLogger(__name__)


@dataclass
class BotRpcClient(MembershipPort, MessengerPort):
    """Membership checks and direct messages through the bot's internal RPC service"""

    base_url: str
    internal_secret: str
    timeout: float = 10.0
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient | None = field(default=None, init=False)

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-Internal-Secret": self.internal_secret,
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self.transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def check_member(self, wa_jid: str) -> MemberCheck:
        if self._client is None:
            raise BotTimeout("BotRpcClient must be entered before use")
        _LOGGER.debug(f"Checking member status of {wa_jid}")
        try:
            response = await self._client.post("/check-member", json={"wa_jid": wa_jid})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            _LOGGER.error(f"Bot RPC member check failed with {status}")
            if status == 404:
                raise BotTimeout("Bot service unavailable") from e
            if status >= 500:
                raise BotTimeout("Bot service error") from e
            raise BotTimeout("Failed to verify membership") from e
        except (httpx.HTTPError, ValueError) as e:
            _LOGGER.error(f"Bot RPC member check failed: {e}")
            raise BotTimeout("Failed to verify membership") from e
        result = MemberCheck(
            is_member=bool(data.get("isMember")), group_id=data.get("groupId")
        )
        _LOGGER.info(f"Member check for {wa_jid} completed: {result.is_member}")
        return result

    async def send_message(self, wa_jid: str, text: str) -> bool:
        if self._client is None:
            _LOGGER.error("BotRpcClient must be entered before use")
            return False
        try:
            response = await self._client.post(
                "/send-message", json={"wa_jid": wa_jid, "message": text}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            _LOGGER.error(f"Failed to send message to {wa_jid}: {e}")
            return False
        _LOGGER.info(f"Message sent to {wa_jid}")
        return True

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as e:
            _LOGGER.warning(f"Bot RPC health check failed: {e}")
            return False
        return True
