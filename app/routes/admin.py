"""
Admin API Routes
Operator endpoints for limiter state and stuck jobs.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import admin_dependency
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limiter import UnknownTierError, rate_limiter
from app.models.api.letter_request import RateLimitResetRequest
from app.models.api.letter_response import (
    JobStatusResponse,
    RateLimitInfoResponse,
    RateLimitResetResponse,
)
from app.routes.letters import job_not_found, job_status_response, queue_unavailable
from app.services.ai_rate_limiter import ai_rate_limiter
from app.services.infrastructure.redis_client import StoreUnavailableError
from app.services.letter_queue import (
    JobNotFoundError,
    LetterQueueError,
    MaxRetriesExceededError,
    letter_queue,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
    dependencies=[Depends(admin_dependency)],
)


def unknown_tier(tier: str, status_code: int = status.HTTP_404_NOT_FOUND) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={
            "error": "UNKNOWN_TIER",
            "message": f"Unknown rate limit tier '{tier}'",
            "tiers": sorted(rate_limiter.tiers),
        },
    )


def store_unavailable(error: Exception) -> HTTPException:
    logger.error("Admin operation failed, store unavailable", error=str(error))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "STORE_UNAVAILABLE", "message": "Redis is unavailable"},
    )


@router.post("/rate-limit/reset", response_model=RateLimitResetResponse)
async def reset_rate_limit(payload: RateLimitResetRequest):
    """Clear window, violations and ban for an identifier (one tier or all)."""
    tiers = [payload.tier] if payload.tier else sorted(rate_limiter.tiers)

    deleted = 0
    try:
        for tier in tiers:
            deleted += await rate_limiter.reset(payload.identifier, tier)
        if payload.include_daily:
            deleted += await ai_rate_limiter.reset(payload.identifier)
    except UnknownTierError:
        raise unknown_tier(payload.tier, status.HTTP_400_BAD_REQUEST)
    except StoreUnavailableError as e:
        raise store_unavailable(e) from e

    logger.info(
        "Rate limit state reset by admin",
        identifier=payload.identifier[:16],
        tiers=tiers,
        keys_deleted=deleted,
    )
    return RateLimitResetResponse(identifier=payload.identifier, tiers=tiers, keys_deleted=deleted)


@router.get("/rate-limit/{tier}/{identifier}", response_model=RateLimitInfoResponse)
async def get_rate_limit_info(tier: str, identifier: str):
    try:
        info = await rate_limiter.get_info(identifier, tier)
    except UnknownTierError:
        raise unknown_tier(tier)
    except StoreUnavailableError as e:
        raise store_unavailable(e) from e

    return RateLimitInfoResponse(**info)


@router.post("/jobs/{job_id}/retry", response_model=JobStatusResponse)
async def retry_job(job_id: str):
    """Requeue a failed job while it still has retry budget."""
    try:
        job = await letter_queue.retry(job_id)
    except JobNotFoundError:
        raise job_not_found(job_id)
    except MaxRetriesExceededError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "MAX_RETRIES_EXCEEDED",
                "message": str(e),
                "max_retries": e.max_retries,
            },
        )
    except LetterQueueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "JOB_NOT_RETRYABLE", "message": str(e)},
        )
    except StoreUnavailableError as e:
        raise queue_unavailable(e) from e

    return job_status_response(job)
