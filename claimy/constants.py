"""Environment variable constants for Claimy.

This module centralizes all environment variable keys used throughout Claimy
to avoid hardcoded strings and provide better maintainability.
"""

# Implementation overrides
CLAIMY_CONFIG = "CLAIMY_CONFIG"
"""Fully qualified class name of a ClaimyConfig implementation.
Default: claimy.config.claimy_config.ClaimyConfig
"""

CLAIMY_CLAIM_STORE = "CLAIMY_CLAIM_STORE"
"""Fully qualified class name of a ClaimStore implementation.
Default: SqlClaimStore when CLAIMY_DATABASE_URL is set, else FilesystemClaimStore.
"""

CLAIMY_JOB_QUEUE = "CLAIMY_JOB_QUEUE"
"""Fully qualified class name of a JobQueue implementation.
Default: RedisJobQueue when CLAIMY_REDIS_URL is set, else MemoryJobQueue.
"""

# Storage
CLAIMY_DATA_DIR = "CLAIMY_DATA_DIR"
"""Directory holding claims.json for the filesystem claim store."""

CLAIMY_DATABASE_URL = "CLAIMY_DATABASE_URL"
"""Async SQLAlchemy URL. When set the SQL claim store is used."""

CLAIMY_REDIS_URL = "CLAIMY_REDIS_URL"
CLAIMY_REDIS_PASSWORD = "CLAIMY_REDIS_PASSWORD"
CLAIMY_QUEUE_PREFIX = "CLAIMY_QUEUE_PREFIX"

# Hosting panel
CLAIMY_PANEL_URL = "CLAIMY_PANEL_URL"
CLAIMY_PANEL_API_KEY = "CLAIMY_PANEL_API_KEY"
"""Pterodactyl application API key (starts with ptla_)."""

CLAIMY_NODE_ID = "CLAIMY_NODE_ID"
CLAIMY_FALLBACK_NODE_IDS = "CLAIMY_FALLBACK_NODE_IDS"
"""Comma separated list of node ids tried after the primary node."""

CLAIMY_TEMPLATES_FILE = "CLAIMY_TEMPLATES_FILE"
CLAIMY_RESOURCES_FILE = "CLAIMY_RESOURCES_FILE"
CLAIMY_EMAIL_DOMAIN = "CLAIMY_EMAIL_DOMAIN"
CLAIMY_HEALTHCHECK_HOST_OVERRIDE = "CLAIMY_HEALTHCHECK_HOST_OVERRIDE"

# Membership
CLAIMY_BOT_RPC_URL = "CLAIMY_BOT_RPC_URL"
CLAIMY_INTERNAL_SECRET = "CLAIMY_INTERNAL_SECRET"
"""Shared secret for bot RPC calls and webhook signatures."""

CLAIMY_ADMIN_JIDS = "CLAIMY_ADMIN_JIDS"
"""Comma separated JIDs which bypass the group membership check."""

CLAIMY_GRACE_PERIOD_HOURS = "CLAIMY_GRACE_PERIOD_HOURS"

# HTTP
CLAIMY_STATUS_REQUIRE_TOKEN = "CLAIMY_STATUS_REQUIRE_TOKEN"
CLAIMY_RATE_LIMIT_IP_PER_MIN = "CLAIMY_RATE_LIMIT_IP_PER_MIN"
CLAIMY_RATE_LIMIT_JID_PER_MIN = "CLAIMY_RATE_LIMIT_JID_PER_MIN"

# Alerts
CLAIMY_DISCORD_WEBHOOK_URL = "CLAIMY_DISCORD_WEBHOOK_URL"
CLAIMY_SLACK_WEBHOOK_URL = "CLAIMY_SLACK_WEBHOOK_URL"
CLAIMY_ALERT_ENV = "CLAIMY_ALERT_ENV"

# Process
CLAIMY_ENV = "CLAIMY_ENV"
CLAIMY_LOG_LEVEL = "CLAIMY_LOG_LEVEL"

DEFAULT_DATA_DIR = "./data"
DEFAULT_BOT_RPC_URL = "http://localhost:3002"
DEFAULT_EMAIL_DOMAIN = "claim.example.com"
