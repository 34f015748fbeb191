"""Health check endpoint.

Verifies the gateway database, Redis (when single-flight uses it) and the
attestation key, and returns structured status.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from aetherlock_oracle.logging_config import get_logger
from aetherlock_oracle.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

VERSION = "0.1.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    state = request.app.state
    db_status = "unknown"
    redis_status = "not_configured"

    database = getattr(state, "database", None)
    if database is not None:
        try:
            await database.ping()
            db_status = "healthy"
        except Exception as exc:
            db_status = f"unhealthy: {exc}"
            logger.error("health.db_check_failed", error=str(exc))

    redis = getattr(state, "redis", None)
    if redis is not None:
        try:
            await redis.ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    signer = getattr(state, "signer", None)
    signer_status = "loaded" if signer is not None else "missing"

    healthy = (
        db_status == "healthy"
        and redis_status in ("healthy", "not_configured")
        and signer is not None
    )
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=VERSION,
        database=db_status,
        redis=redis_status,
        signer=signer_status,
    )
