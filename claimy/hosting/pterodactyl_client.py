from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from claimy.claimy_error import (
    AccountConflict,
    HostingApiError,
    HostingNotFound,
    HostingRequestRejected,
)
from claimy.crypto import generate_email_from_jid, generate_random_password
from claimy.hosting.hosting_port import (
    Account,
    AccountResult,
    Allocation,
    HostingPort,
    Server,
    ServerSpec,
    ServerStatus,
)
from claimy.hosting.templates import ResourceConfig

_LOGGER = logging.getLogger(__name__)


def _to_account(attributes: dict[str, Any]) -> Account:
    return Account(
        id=attributes["id"],
        username=attributes["username"],
        email=attributes.get("email"),
        external_id=attributes.get("external_id"),
    )


def _to_allocation(attributes: dict[str, Any]) -> Allocation:
    return Allocation(
        id=attributes["id"],
        ip=attributes["ip"],
        port=attributes["port"],
        alias=attributes.get("alias") or None,
        assigned=bool(attributes.get("assigned")),
    )


@dataclass
class PterodactylClient(HostingPort):
    """HostingPort over the Pterodactyl application API"""

    base_url: str
    api_key: str
    node_ids: list[int] = field(default_factory=lambda: [1])
    email_domain: str = "claim.example.com"
    resources: ResourceConfig = field(default_factory=ResourceConfig)
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient | None = field(default=None, init=False)

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "Application/vnd.pterodactyl.v1+json",
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

    def get_node_ids(self) -> list[int]:
        return list(self.node_ids)

    def get_panel_url(self) -> str:
        return self.base_url

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        """Send a request, translating failures into hosting errors"""
        if self._client is None:
            raise HostingApiError("PterodactylClient must be entered before use")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            _LOGGER.error(f"Pterodactyl API {method} {path} failed: {e}")
            raise HostingApiError(f"{method} {path} failed: {e}") from e
        if response.status_code == 404:
            raise HostingNotFound(f"{method} {path} not found", 404)
        if response.status_code == 422:
            _LOGGER.error(f"Pterodactyl API rejected {method} {path}: {response.text}")
            raise HostingRequestRejected(f"{method} {path} rejected", 422)
        if response.status_code >= 400:
            _LOGGER.error(
                f"Pterodactyl API {method} {path} returned {response.status_code}: "
                f"{response.text}"
            )
            raise HostingApiError(
                f"{method} {path} returned {response.status_code}", response.status_code
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def find_account_by_external_id(self, external_id: str) -> Account | None:
        data = await self._request(
            "GET", "/api/application/users", params={"filter[external_id]": external_id}
        )
        users = data.get("data") or []
        if not users:
            return None
        return _to_account(users[0]["attributes"])

    async def create_or_reuse_account(self, wa_jid: str, username: str) -> AccountResult:
        password = generate_random_password()
        account = await self.find_account_by_external_id(wa_jid)
        if account:
            await self._request(
                "PATCH", f"/api/application/users/{account.id}", json={"password": password}
            )
            _LOGGER.info(f"Reusing Pterodactyl user {account.id} ({account.username})")
            return AccountResult(account=account, password=password, is_new=False)

        try:
            data = await self._request(
                "POST",
                "/api/application/users",
                json={
                    "username": username,
                    "email": generate_email_from_jid(wa_jid, self.email_domain),
                    "first_name": username,
                    "last_name": "User",
                    "password": password,
                    "root_admin": False,
                    "language": "en",
                    "external_id": wa_jid,
                },
            )
        except HostingRequestRejected as e:
            raise AccountConflict(f"Could not create user {username}", 422) from e
        account = _to_account(data["attributes"])
        _LOGGER.info(f"Created Pterodactyl user {account.id} ({account.username})")
        return AccountResult(account=account, password=password, is_new=True)

    async def find_available_allocation(self, node_id: int) -> Allocation | None:
        data = await self._request("GET", f"/api/application/nodes/{node_id}/allocations")
        for item in data.get("data") or []:
            attributes = item["attributes"]
            if not attributes.get("assigned"):
                return _to_allocation(attributes)
        return None

    async def create_server(self, spec: ServerSpec) -> Server:
        template = spec.template
        body: dict[str, Any] = {
            "name": spec.name,
            "description": spec.description,
            "user": spec.user_id,
            "egg": template.egg_id,
            "docker_image": template.docker_image,
            "startup": template.startup_command,
            "environment": {
                **template.environment,
                "SERVER_PORT": str(spec.allocation.port),
            },
            "allocation": {"default": spec.allocation.id},
        }
        if template.use_resource_config:
            body["limits"] = self.resources.get_limits()
            body["feature_limits"] = self.resources.get_feature_limits()
        data = await self._request("POST", "/api/application/servers", json=body)
        attributes = data["attributes"]
        server = Server(
            id=attributes["id"],
            name=attributes.get("name", spec.name),
            uuid=attributes.get("uuid"),
            identifier=attributes.get("identifier"),
        )
        _LOGGER.info(
            f"Created Pterodactyl server {server.id} for user {spec.user_id} "
            f"on port {spec.allocation.port}"
        )
        return server

    async def get_server_status(self, server_id: int) -> ServerStatus:
        data = await self._request("GET", f"/api/application/servers/{server_id}")
        attributes = data["attributes"]
        status = attributes.get("status")
        return ServerStatus(
            status=status,
            suspended=bool(attributes.get("suspended")) or status == "suspended",
            installing=bool(attributes.get("installing")) or status == "installing",
        )

    async def delete_server(self, server_id: int) -> None:
        try:
            await self._request("DELETE", f"/api/application/servers/{server_id}")
            _LOGGER.info(f"Deleted Pterodactyl server {server_id}")
        except HostingNotFound:
            _LOGGER.warning(f"Server {server_id} already deleted or not found")

    async def delete_account_if_empty(self, user_id: int) -> bool:
        try:
            data = await self._request(
                "GET", f"/api/application/users/{user_id}", params={"include": "servers"}
            )
            servers = (
                data["attributes"].get("relationships", {}).get("servers", {}).get("data")
                or []
            )
            if servers:
                _LOGGER.info(f"User {user_id} still owns {len(servers)} servers, keeping it")
                return False
            await self._request("DELETE", f"/api/application/users/{user_id}")
            _LOGGER.info(f"Deleted empty Pterodactyl user {user_id}")
        except HostingNotFound:
            _LOGGER.warning(f"User {user_id} already deleted or not found")
        return True
