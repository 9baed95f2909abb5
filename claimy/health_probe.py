import asyncio
from dataclasses import dataclass
import logging
import time

from claimy.hosting.templates import HealthcheckConfig

_LOGGER = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    success: bool
    message: str
    attempts: int
    elapsed_ms: int


@dataclass
class HealthProbe:
    """TCP reachability check for newly created servers. check_tcp never raises."""

    host_override: str | None = None

    def choose_host(self, ip: str, alias: str | None = None) -> str:
        """Operator override first, then the allocation alias, then the raw ip"""
        if self.host_override:
            return self.host_override
        return alias or ip

    async def check_tcp(
        self,
        host: str,
        port: int,
        timeout_sec: float = 5,
        retries: int = 3,
        retry_delay_sec: float = 2,
    ) -> ProbeResult:
        start = time.monotonic()
        max_attempts = max(retries, 1)
        for attempt in range(1, max_attempts + 1):
            try:
                await self._connect_once(host, port, timeout_sec)
                elapsed_ms = int((time.monotonic() - start) * 1000)
                _LOGGER.info(f"Health check of {host}:{port} passed on attempt {attempt}")
                return ProbeResult(
                    success=True,
                    message=f"TCP connection successful on attempt {attempt}",
                    attempts=attempt,
                    elapsed_ms=elapsed_ms,
                )
            except (OSError, asyncio.TimeoutError) as e:
                _LOGGER.warning(
                    f"Health check of {host}:{port} failed on attempt {attempt}: {e!r}"
                )
            if attempt < max_attempts:
                await asyncio.sleep(retry_delay_sec)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        _LOGGER.error(f"Health check of {host}:{port} failed after {max_attempts} attempts")
        return ProbeResult(
            success=False,
            message=f"TCP connection failed after {max_attempts} attempts",
            attempts=max_attempts,
            elapsed_ms=elapsed_ms,
        )

    async def check_server(
        self,
        ip: str,
        port: int,
        alias: str | None = None,
        config: HealthcheckConfig | None = None,
    ) -> ProbeResult:
        if config is None:
            config = HealthcheckConfig()
        host = self.choose_host(ip, alias)
        _LOGGER.info(f"Starting health check of {host}:{port}")
        return await self.check_tcp(
            host, port, config.timeout_sec, config.retries, config.retry_delay_sec
        )

    async def _connect_once(self, host: str, port: int, timeout_sec: float) -> None:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout_sec
        )
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
