from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

from claimy.claimy_error import NoAllocationAvailable
from claimy.hosting.templates import ServerTemplate

_LOGGER = logging.getLogger(__name__)


@dataclass
class Account:
    id: int
    username: str
    email: str | None = None
    external_id: str | None = None


@dataclass
class AccountResult:
    account: Account
    password: str
    is_new: bool


@dataclass
class Allocation:
    id: int
    ip: str
    port: int
    alias: str | None = None
    assigned: bool = False


@dataclass
class Server:
    id: int
    name: str
    uuid: str | None = None
    identifier: str | None = None


@dataclass
class ServerStatus:
    status: str | None
    suspended: bool
    installing: bool


@dataclass
class ServerSpec:
    name: str
    description: str
    user_id: int
    template: ServerTemplate
    allocation: Allocation
    node_id: int


@dataclass
class AllocationRequest:
    wa_jid: str
    username: str
    template: ServerTemplate
    server_name: str
    description: str


@dataclass
class AllocationResult:
    account: Account
    server: Server
    allocation: Allocation
    password: str
    node_id: int


class HostingPort(ABC):
    """
    Hosting control plane: accounts, allocations and servers. Implementations raise
    HostingApiError (or a subclass) rather than leaking transport errors.
    """

    @abstractmethod
    async def create_or_reuse_account(self, wa_jid: str, username: str) -> AccountResult:
        """Find the account whose external id is the JID and rotate its password, or
        create a new account with a generated password."""

    @abstractmethod
    async def find_available_allocation(self, node_id: int) -> Allocation | None:
        """Get the first unassigned allocation on a node"""

    @abstractmethod
    async def create_server(self, spec: ServerSpec) -> Server:
        """Create a server bound to the allocation the ServerSpec names"""

    @abstractmethod
    async def get_server_status(self, server_id: int) -> ServerStatus:
        """Get the installation status of a server"""

    @abstractmethod
    async def delete_server(self, server_id: int) -> None:
        """Delete a server. A server which does not exist counts as deleted."""

    @abstractmethod
    async def delete_account_if_empty(self, user_id: int) -> bool:
        """Delete an account unless it still owns servers. Returns True if the account
        is gone afterwards."""

    @abstractmethod
    def get_node_ids(self) -> list[int]:
        """Node ids to try, primary first"""

    @abstractmethod
    def get_panel_url(self) -> str:
        """Public base url of the panel"""

    async def allocate_with_fallback(self, request: AllocationRequest) -> AllocationResult:
        """Create (or reuse) the account, then try each node in turn until a server is
        created on one of them.

        Raises:
            NoAllocationAvailable: If every node was tried without success
        """
        account_result = await self.create_or_reuse_account(request.wa_jid, request.username)
        for node_id in self.get_node_ids():
            try:
                _LOGGER.debug(f"Trying node {node_id} for allocation")
                allocation = await self.find_available_allocation(node_id)
                if allocation is None:
                    _LOGGER.warning(f"No available allocations on node {node_id}")
                    continue
                server = await self.create_server(
                    ServerSpec(
                        name=request.server_name,
                        description=request.description,
                        user_id=account_result.account.id,
                        template=request.template,
                        allocation=allocation,
                        node_id=node_id,
                    )
                )
            except Exception as e:
                _LOGGER.warning(f"Failed to allocate on node {node_id}, trying next: {e}")
                continue
            _LOGGER.info(
                f"Allocated server {server.id} for user {account_result.account.id} "
                f"on node {node_id} port {allocation.port}"
            )
            return AllocationResult(
                account=account_result.account,
                server=server,
                allocation=allocation,
                password=account_result.password,
                node_id=node_id,
            )
        raise NoAllocationAvailable("All nodes are full or unavailable")
