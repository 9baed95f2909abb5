"""
FastAPI application for claimy.

This module provides a FastAPI application that:
1. Builds the claimy services from the environment
2. Enters and exits them with the application lifecycle
3. Runs the job handlers in process when there is no shared redis queue
"""

import asyncio
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from claimy.config.claimy_config import get_config
from claimy.fastapi.endpoints import add_endpoints
from claimy.rate_limiter import RateLimiter
from claimy.services import Services, create_services

_LOGGER = logging.getLogger(__name__)

# Global services instance
_services: Services | None = None  # pylint: disable=invalid-name


async def _prune_rate_limiters(limiters: list[RateLimiter], interval: float = 60):
    while True:
        await asyncio.sleep(interval)
        for limiter in limiters:
            limiter.cleanup()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """
    Manage the application lifecycle.

    Jobs are only processed here when the queue lives in this process. With a
    redis queue the api only enqueues and separate workers run the jobs.
    """
    global _services

    config = get_config()
    config.validate()
    _services = create_services(config, run_jobs=not config.redis_url)
    async with _services:
        limiters = add_endpoints(fastapi_app, _services)
        pruner = asyncio.create_task(_prune_rate_limiters(limiters))
        try:
            yield
        finally:
            pruner.cancel()
            _services = None


app = FastAPI(
    title="Claimy",
    description="Claims hosted servers for members of a WhatsApp group",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check():
    """Liveness check which does not touch the claim store"""
    return {"status": "healthy", "services_active": _services is not None}
