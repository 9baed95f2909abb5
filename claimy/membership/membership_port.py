from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class MembershipAction(Enum):
    JOIN = "join"
    LEAVE = "leave"


@dataclass
class MemberCheck:
    is_member: bool
    group_id: str | None = None


@dataclass
class MembershipEvent:
    """A member joined or left the target group"""

    action: MembershipAction
    wa_jid: str
    group_id: str
    timestamp: datetime


class MembershipPort(ABC):
    @abstractmethod
    async def check_member(self, wa_jid: str) -> MemberCheck:
        """Check whether a JID belongs to the target group.

        Raises:
            MembershipUnavailable: If the backend timed out or could not be reached
        """


class MessengerPort(ABC):
    @abstractmethod
    async def send_message(self, wa_jid: str, text: str) -> bool:
        """Send a direct message. Best effort: failures are logged and False returned."""
