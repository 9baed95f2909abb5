import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
import logging
import signal

from claimy.config.claimy_config import ClaimyConfig, get_config
from claimy.notify.notifier import AlertLevel
from claimy.services import Services, create_services

_LOGGER = logging.getLogger(__name__)


@dataclass
class ClaimWorker:
    """
    Runs claim jobs until stopped. Every maintenance interval finished jobs and old
    terminal claims are removed, and operators are alerted if too many jobs failed.
    """

    services: Services
    maintenance_interval: float = 3600
    job_retention: timedelta = timedelta(hours=24)
    claim_retention_days: int = 30
    _stopped: asyncio.Event = field(default_factory=asyncio.Event, init=False)

    def stop(self):
        _LOGGER.info("Stopping claim worker")
        self._stopped.set()

    async def run_maintenance(self) -> dict[str, int]:
        job_queue = self.services.job_queue
        removed_jobs = await job_queue.cleanup(self.job_retention)
        removed_claims = await self.services.claim_store.cleanup_old_claims(
            self.claim_retention_days
        )
        stats = await job_queue.get_stats()
        failed = sum(kind_stats.failed for kind_stats in stats.values())
        await self.services.notifier.notify_queue_stats(
            failed,
            {f"{kind} failed": kind_stats.failed for kind, kind_stats in stats.items()},
        )
        _LOGGER.info(
            f"Maintenance removed {removed_jobs} jobs and {removed_claims} claims, "
            f"{failed} failed jobs remain"
        )
        return {
            "removed_jobs": removed_jobs,
            "removed_claims": removed_claims,
            "failed_jobs": failed,
        }

    async def run(self):
        """Process jobs until stop is called"""
        async with self.services:
            config = self.services.config
            _LOGGER.info(f"Claim worker started ({config.env})")
            if config.is_production:
                await self.services.notifier.notify(
                    AlertLevel.INFO,
                    "Worker Started",
                    "Claim worker is up and processing jobs",
                    {"Environment": config.env},
                )
            while not self._stopped.is_set():
                try:
                    await asyncio.wait_for(
                        self._stopped.wait(), timeout=self.maintenance_interval
                    )
                except asyncio.TimeoutError:
                    try:
                        await self.run_maintenance()
                    except Exception:
                        _LOGGER.error("error_running_maintenance", exc_info=True)
        _LOGGER.info("Claim worker stopped")


async def run_worker(config: ClaimyConfig | None = None):
    if config is None:
        config = get_config()
    config.validate()
    worker = ClaimWorker(create_services(config, run_jobs=True))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)
    try:
        await worker.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
