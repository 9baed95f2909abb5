from dataclasses import dataclass, field
import os

from claimy import constants
from claimy.claimy_error import ClaimyError
from claimy.util import get_impl, parse_bool, split_csv


@dataclass
class ClaimyConfig:
    """Configuration object for claimy, usually loaded from the environment"""

    panel_url: str = ""
    panel_api_key: str = ""
    node_id: int = 1
    fallback_node_ids: list[int] = field(default_factory=list)
    templates_file: str | None = None
    resources_file: str | None = None
    email_domain: str = constants.DEFAULT_EMAIL_DOMAIN
    healthcheck_host_override: str | None = None

    bot_rpc_url: str = constants.DEFAULT_BOT_RPC_URL
    internal_secret: str = ""
    admin_jids: frozenset[str] = frozenset()
    grace_period_hours: float = 4

    status_require_token: bool = False
    rate_limit_ip_per_min: int = 20
    rate_limit_jid_per_min: int = 5

    discord_webhook_url: str | None = None
    slack_webhook_url: str | None = None
    alert_env: str = "production"

    env: str = "development"
    data_dir: str = constants.DEFAULT_DATA_DIR
    database_url: str | None = None
    redis_url: str | None = None
    redis_password: str | None = None
    queue_prefix: str = "claimy"

    @classmethod
    def from_env(cls) -> "ClaimyConfig":
        env = os.environ
        return cls(
            panel_url=env.get(constants.CLAIMY_PANEL_URL, "").rstrip("/"),
            panel_api_key=env.get(constants.CLAIMY_PANEL_API_KEY, ""),
            node_id=int(env.get(constants.CLAIMY_NODE_ID) or 1),
            fallback_node_ids=[
                int(i) for i in split_csv(env.get(constants.CLAIMY_FALLBACK_NODE_IDS))
            ],
            templates_file=env.get(constants.CLAIMY_TEMPLATES_FILE) or None,
            resources_file=env.get(constants.CLAIMY_RESOURCES_FILE) or None,
            email_domain=env.get(constants.CLAIMY_EMAIL_DOMAIN)
            or constants.DEFAULT_EMAIL_DOMAIN,
            healthcheck_host_override=env.get(constants.CLAIMY_HEALTHCHECK_HOST_OVERRIDE)
            or None,
            bot_rpc_url=(
                env.get(constants.CLAIMY_BOT_RPC_URL) or constants.DEFAULT_BOT_RPC_URL
            ).rstrip("/"),
            internal_secret=env.get(constants.CLAIMY_INTERNAL_SECRET, ""),
            admin_jids=frozenset(split_csv(env.get(constants.CLAIMY_ADMIN_JIDS))),
            grace_period_hours=float(env.get(constants.CLAIMY_GRACE_PERIOD_HOURS) or 4),
            status_require_token=parse_bool(env.get(constants.CLAIMY_STATUS_REQUIRE_TOKEN)),
            rate_limit_ip_per_min=int(env.get(constants.CLAIMY_RATE_LIMIT_IP_PER_MIN) or 20),
            rate_limit_jid_per_min=int(
                env.get(constants.CLAIMY_RATE_LIMIT_JID_PER_MIN) or 5
            ),
            discord_webhook_url=env.get(constants.CLAIMY_DISCORD_WEBHOOK_URL) or None,
            slack_webhook_url=env.get(constants.CLAIMY_SLACK_WEBHOOK_URL) or None,
            alert_env=env.get(constants.CLAIMY_ALERT_ENV) or "production",
            env=env.get(constants.CLAIMY_ENV) or "development",
            data_dir=env.get(constants.CLAIMY_DATA_DIR) or constants.DEFAULT_DATA_DIR,
            database_url=env.get(constants.CLAIMY_DATABASE_URL) or None,
            redis_url=env.get(constants.CLAIMY_REDIS_URL) or None,
            redis_password=env.get(constants.CLAIMY_REDIS_PASSWORD) or None,
            queue_prefix=env.get(constants.CLAIMY_QUEUE_PREFIX) or "claimy",
        )

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    def get_node_ids(self) -> list[int]:
        """Primary node first, then the fallbacks in order, without duplicates"""
        node_ids = [self.node_id]
        for node_id in self.fallback_node_ids:
            if node_id not in node_ids:
                node_ids.append(node_id)
        return node_ids

    def is_privileged(self, wa_jid: str) -> bool:
        return wa_jid in self.admin_jids

    def validate(self):
        """Check the settings the worker and api cannot run without.

        Raises:
            ClaimyError: Listing every problem found
        """
        problems = []
        if not self.panel_url:
            problems.append(f"{constants.CLAIMY_PANEL_URL} is required")
        if not self.panel_api_key.startswith("ptla_"):
            problems.append(
                f"{constants.CLAIMY_PANEL_API_KEY} must be an application key (ptla_...)"
            )
        if not self.internal_secret:
            problems.append(f"{constants.CLAIMY_INTERNAL_SECRET} is required")
        if self.grace_period_hours < 0:
            problems.append(f"{constants.CLAIMY_GRACE_PERIOD_HOURS} must not be negative")
        if problems:
            raise ClaimyError("Invalid configuration: " + "; ".join(problems))


_config: ClaimyConfig | None = None


def get_config() -> ClaimyConfig:
    global _config
    if _config is None:
        config_type = get_impl(constants.CLAIMY_CONFIG, ClaimyConfig, ClaimyConfig)
        _config = config_type.from_env()
    return _config


def set_config(config: ClaimyConfig | None):
    global _config
    _config = config
