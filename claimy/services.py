from contextlib import AbstractAsyncContextManager, AsyncExitStack
from dataclasses import dataclass, field
import logging
from pathlib import Path

from claimy.claim_job_handlers import register_handlers
from claimy.claim_orchestrator import ClaimOrchestrator
from claimy.claim_store import ClaimStore
from claimy.config.claimy_config import ClaimyConfig, get_config
from claimy.constants import CLAIMY_CLAIM_STORE, CLAIMY_JOB_QUEUE
from claimy.health_probe import HealthProbe
from claimy.hosting.hosting_port import HostingPort
from claimy.hosting.pterodactyl_client import PterodactylClient
from claimy.hosting.templates import load_resource_config, load_templates
from claimy.job_queue import JobQueue
from claimy.membership.bot_rpc_client import BotRpcClient
from claimy.membership.membership_port import MembershipPort, MessengerPort
from claimy.notify.notifier import LoggingNotifier, NotifierPort, WebhookNotifier
from claimy.util import get_impl

_LOGGER = logging.getLogger(__name__)


def get_default_claim_store(config: ClaimyConfig) -> ClaimStore:
    """Get the claim store for the configuration given.

    The implementation can be overridden by setting the CLAIMY_CLAIM_STORE
    environment variable to a fully qualified class name.
    """
    try:
        store_class = get_impl(CLAIMY_CLAIM_STORE, ClaimStore)
        claim_store = store_class()
    except ValueError:
        if config.database_url:
            from claimy.sql.sql_claim_store import SqlClaimStore

            claim_store = SqlClaimStore(database_url=config.database_url)
        else:
            from claimy.fs.filesystem_claim_store import FilesystemClaimStore

            claim_store = FilesystemClaimStore(root_dir=Path(config.data_dir))
    _LOGGER.info(f"Using Claim Store: {type(claim_store).__name__}")
    return claim_store


def get_default_job_queue(config: ClaimyConfig) -> JobQueue:
    """Get the job queue for the configuration given.

    The implementation can be overridden by setting the CLAIMY_JOB_QUEUE
    environment variable to a fully qualified class name.
    """
    try:
        queue_class = get_impl(CLAIMY_JOB_QUEUE, JobQueue)
        job_queue = queue_class()
    except ValueError:
        if config.redis_url:
            from claimy.redis.redis_job_queue import RedisJobQueue

            job_queue = RedisJobQueue(
                redis_url=config.redis_url,
                redis_password=config.redis_password,
                key_prefix=config.queue_prefix,
            )
        else:
            from claimy.mem.memory_job_queue import MemoryJobQueue

            job_queue = MemoryJobQueue()
    _LOGGER.info(f"Using Job Queue: {type(job_queue).__name__}")
    return job_queue


def get_default_notifier(config: ClaimyConfig) -> NotifierPort:
    if config.discord_webhook_url or config.slack_webhook_url:
        return WebhookNotifier(
            discord_webhook_url=config.discord_webhook_url,
            slack_webhook_url=config.slack_webhook_url,
            alert_env=config.alert_env,
        )
    _LOGGER.info("No alert webhook configured, alerts will only be logged")
    return LoggingNotifier()


@dataclass
class Services:
    """
    Everything a claimy process needs, entered and exited together. Handlers are
    registered on the job queue only when run_jobs is set, so an api process sharing
    a redis queue with workers only produces jobs.
    """

    config: ClaimyConfig
    claim_store: ClaimStore
    job_queue: JobQueue
    hosting: HostingPort
    membership: MembershipPort
    messenger: MessengerPort
    notifier: NotifierPort
    orchestrator: ClaimOrchestrator
    run_jobs: bool = True
    _exit_stack: AsyncExitStack | None = field(default=None, init=False)

    async def __aenter__(self):
        stack = AsyncExitStack()
        try:
            resources = [self.hosting, self.membership, self.messenger, self.claim_store]
            entered = []
            for resource in resources:
                if isinstance(resource, AbstractAsyncContextManager) and not any(
                    resource is other for other in entered
                ):
                    await stack.enter_async_context(resource)
                    entered.append(resource)
            if self.run_jobs:
                register_handlers(self.job_queue, self.orchestrator)
            await stack.enter_async_context(self.job_queue)
        except BaseException:
            await stack.aclose()
            raise
        self._exit_stack = stack
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        if self._exit_stack:
            stack = self._exit_stack
            self._exit_stack = None
            await stack.__aexit__(exc_type, exc_value, traceback)


def create_services(config: ClaimyConfig | None = None, run_jobs: bool = True) -> Services:
    """Build the services for a process from its configuration"""
    if config is None:
        config = get_config()
    claim_store = get_default_claim_store(config)
    job_queue = get_default_job_queue(config)
    hosting = PterodactylClient(
        base_url=config.panel_url,
        api_key=config.panel_api_key,
        node_ids=config.get_node_ids(),
        email_domain=config.email_domain,
        resources=load_resource_config(config.resources_file),
    )
    bot = BotRpcClient(base_url=config.bot_rpc_url, internal_secret=config.internal_secret)
    notifier = get_default_notifier(config)
    orchestrator = ClaimOrchestrator(
        claim_store=claim_store,
        job_queue=job_queue,
        membership=bot,
        hosting=hosting,
        health_probe=HealthProbe(host_override=config.healthcheck_host_override),
        notifier=notifier,
        messenger=bot,
        templates=load_templates(config.templates_file),
        is_privileged=config.is_privileged,
        grace_period_hours=config.grace_period_hours,
        require_client_token=config.status_require_token,
    )
    return Services(
        config=config,
        claim_store=claim_store,
        job_queue=job_queue,
        hosting=hosting,
        membership=bot,
        messenger=bot,
        notifier=notifier,
        orchestrator=orchestrator,
        run_jobs=run_jobs,
    )
