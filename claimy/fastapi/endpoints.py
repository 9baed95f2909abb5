from dataclasses import asdict
from datetime import UTC, datetime
import logging
import math
from typing import Annotated

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from claimy.claim_orchestrator import ClaimRequest
from claimy.claimy_error import (
    ConflictError,
    DuplicateActiveClaim,
    InvalidClaimToken,
    MembershipUnavailable,
    NotAMember,
    ValidationError,
)
from claimy.crypto import verify_signature, verify_timestamp
from claimy.fastapi.schemas import (
    ClaimAccepted,
    ClaimBody,
    ClaimStatsResponse,
    ClaimStatusResponse,
    HealthResponse,
    WebhookPayload,
)
from claimy.formatting import mask_jid, phone_to_jid
from claimy.rate_limiter import RateLimiter
from claimy.services import Services

_LOGGER = logging.getLogger(__name__)


def _client_ip(request: Request) -> str:
    if request.client is None:
        return "unknown"
    return request.client.host


def _check_rate(limiter: RateLimiter, key: str):
    if not limiter.is_allowed(key):
        retry_after = max(1, math.ceil(limiter.get_reset_time(key)))
        raise HTTPException(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many requests, please try again later",
            headers={"Retry-After": str(retry_after)},
        )


def add_endpoints(
    fastapi: FastAPI,
    services: Services,
    ip_limiter: RateLimiter | None = None,
    jid_limiter: RateLimiter | None = None,
) -> list[RateLimiter]:
    """Add the claim, webhook and health endpoints under /api. Returns the rate
    limiters in use so the caller can prune them."""
    config = services.config
    orchestrator = services.orchestrator
    if ip_limiter is None:
        ip_limiter = RateLimiter(config.rate_limit_ip_per_min)
    if jid_limiter is None:
        jid_limiter = RateLimiter(config.rate_limit_jid_per_min)

    router = APIRouter(prefix="/api")

    @router.post("/claim", status_code=status.HTTP_202_ACCEPTED)
    async def submit_claim(body: ClaimBody, request: Request) -> ClaimAccepted:
        _check_rate(ip_limiter, _client_ip(request))
        if body.template not in orchestrator.templates:
            raise HTTPException(422, f"Unknown template {body.template}")
        _check_rate(jid_limiter, phone_to_jid(body.wa_number_e164))
        try:
            result = await orchestrator.submit(
                ClaimRequest(
                    wa_number_e164=body.wa_number_e164,
                    template=body.template,
                    username=body.username,
                )
            )
        except ValidationError as e:
            raise HTTPException(422, str(e))
        except NotAMember:
            raise HTTPException(
                status.HTTP_403_FORBIDDEN,
                "This number is not a member of the group required to claim a server",
            )
        except DuplicateActiveClaim:
            raise HTTPException(
                status.HTTP_409_CONFLICT, "You already have an active server claim"
            )
        except MembershipUnavailable:
            raise HTTPException(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "Group membership could not be verified, please try again",
            )
        return ClaimAccepted(claim_id=result.claim_id, claim_token=result.claim_token)

    @router.get("/claim/{claim_id}/status")
    async def get_claim_status(
        claim_id: str,
        x_claim_token: Annotated[str | None, Header()] = None,
    ) -> ClaimStatusResponse:
        try:
            view = await orchestrator.get_status(claim_id, x_claim_token)
        except InvalidClaimToken:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid claim token")
        if view is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Claim not found")
        return ClaimStatusResponse(**asdict(view))

    @router.post("/whatsapp-webhook", status_code=status.HTTP_204_NO_CONTENT)
    async def whatsapp_webhook(
        request: Request,
        x_signature: Annotated[str | None, Header()] = None,
        x_timestamp: Annotated[str | None, Header()] = None,
    ) -> Response:
        body = await request.body()
        if not x_signature or not x_timestamp:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing signature")
        if not verify_timestamp(x_timestamp):
            _LOGGER.warning(f"Rejected webhook with stale timestamp {x_timestamp}")
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Request expired")
        if not verify_signature(config.internal_secret, x_timestamp, body, x_signature):
            _LOGGER.warning("Rejected webhook with invalid signature")
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid signature")
        try:
            payload = WebhookPayload.model_validate_json(body)
        except PydanticValidationError as e:
            raise RequestValidationError(e.errors(include_url=False))

        _LOGGER.info(f"Webhook {payload.action} for {mask_jid(payload.wa_jid)}")
        try:
            await orchestrator.on_membership_event(payload.to_event())
        except ConflictError as e:
            raise HTTPException(status.HTTP_409_CONFLICT, str(e))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/health")
    async def health() -> HealthResponse:
        try:
            stats = await services.claim_store.get_stats()
        except Exception as e:
            _LOGGER.error(f"Health check failed: {e}", exc_info=True)
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "unhealthy")
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(UTC),
            stats=ClaimStatsResponse(**asdict(stats)),
        )

    fastapi.include_router(router)
    return [ip_limiter, jid_limiter]
