"""
Rate Limit Dependencies - admission and rate limiting for endpoints.

This module provides FastAPI dependencies that compose the admission
chain for letter generation:

    require_session -> require_ai_access -> rate_limit_ai_attempts -> ai_generation_limit

plus the IP-keyed tiers used on every router.

Usage:
    from app.middleware.rate_limit_dependencies import rate_limit_api

    @router.get("/my-endpoint")
    async def my_endpoint(
        request: Request,
        _rate: None = Depends(rate_limit_api),  # <- One line!
    ):
        pass

Features:
- Per-IP and per-session sliding window tiers with ban escalation
- Daily cap + cooldown pre-check for generation
- Automatic 401/403/429 error responses with a machine-readable code
- Rate limit info added to request.state for the headers middleware
"""

from fastapi import Depends, HTTPException, Request, status

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.middleware.rate_limiter import rate_limiter
from app.models.domain.access_domain import AccessDecision, AccessReason
from app.models.domain.rate_limit_domain import RateLimitCode, RateLimitResult
from app.services.access_gate import access_gate
from app.services.ai_rate_limiter import ai_rate_limiter, format_duration
from app.services.infrastructure.redis_client import StoreUnavailableError

logger = get_logger(__name__)


def _raise_if_denied(request: Request, result: RateLimitResult, message: str) -> None:
    """Publish the result for the headers middleware and turn a denial into an HTTP error."""
    request.state.rate_limit_info = result.to_info()

    if result.allowed:
        return

    headers = {"Retry-After": str(result.retry_after)} if result.retry_after else None

    if result.banned:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": RateLimitCode.TEMPORARILY_BANNED.value,
                "message": f"Too many rejected requests. Access suspended for {format_duration(result.retry_after or 0)}.",
                "retry_after": result.retry_after,
            },
            headers=headers,
        )

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": (result.code or RateLimitCode.RATE_LIMIT_EXCEEDED).value,
            "message": message,
            "limit": result.limit,
            "retry_after": result.retry_after,
            "reset_at": result.reset_at,
        },
        headers=headers,
    )


async def _check_ip_tier(request: Request, tier_name: str) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return  # Rate limiting disabled

    ip_address = getattr(request.state, "ip_address", None)
    if not ip_address:
        logger.warning("Rate limit check skipped - no IP address", tier=tier_name)
        return

    result = await rate_limiter.check(ip_address, tier_name)
    _raise_if_denied(
        request,
        result,
        f"Too many requests from your IP. Try again in {result.retry_after} seconds.",
    )


async def rate_limit_global(request: Request) -> None:
    """Global per-IP tier, applied to every public router."""
    await _check_ip_tier(request, "global")


async def rate_limit_api(request: Request) -> None:
    """Per-IP tier for the JSON API read endpoints."""
    await _check_ip_tier(request, "api")


async def require_session(request: Request) -> str:
    """Session id set by VisitorTrackingMiddleware, falling back to the raw cookie."""
    session_id = getattr(request.state, "session_id", None) or request.cookies.get(
        settings.SESSION_COOKIE_NAME
    )
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "SESSION_REQUIRED",
                "message": "A session is required to use letter generation. Please enable cookies.",
            },
        )
    return session_id


async def require_ai_access(
    request: Request,
    session_id: str = Depends(require_session),
) -> AccessDecision:
    """
    Access gate for letter generation.

    Raises:
        HTTPException: 403 INSUFFICIENT_VISITS with the visits still needed,
            503 if the visitor ledger cannot be read
    """
    try:
        decision = await access_gate.evaluate(session_id)
    except StoreUnavailableError as e:
        logger.error("Access gate unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "ACCESS_CHECK_UNAVAILABLE",
                "message": "Access could not be verified right now. Please retry shortly.",
            },
        ) from e

    request.state.access_decision = decision

    if decision.granted:
        return decision

    if decision.reason == AccessReason.NO_SESSION:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "SESSION_REQUIRED", "message": "A session is required to use letter generation."},
        )

    logger.info(
        "Letter generation access denied",
        reason=decision.reason.value,
        visit_count=decision.visit_count,
        visits_remaining=decision.visits_remaining,
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error": "INSUFFICIENT_VISITS",
            "message": (
                f"Letter generation unlocks from visit {decision.required_visits}. "
                f"{decision.visits_remaining} more visit(s) needed."
            ),
            "current_visits": decision.visit_count,
            "required_visits": decision.required_visits,
            "visits_remaining": decision.visits_remaining,
        },
    )


async def rate_limit_ai_attempts(
    request: Request,
    session_id: str = Depends(require_session),
) -> None:
    """Sliding-window attempts guard on generation, keyed by session."""
    if not settings.RATE_LIMIT_ENABLED:
        return

    result = await rate_limiter.check(session_id, "ai")
    _raise_if_denied(
        request,
        result,
        f"Too many generation attempts. Try again in {result.retry_after} seconds.",
    )


async def ai_generation_limit(
    request: Request,
    session_id: str = Depends(require_session),
) -> RateLimitResult:
    """
    Daily cap + cooldown pre-check. Nothing is counted here; the route
    commits usage once the job is enqueued.
    """
    result = await ai_rate_limiter.check(session_id)

    if result.code == RateLimitCode.COOLDOWN_ACTIVE:
        message = f"Please wait {result.retry_after} second(s) before the next generation."
    else:
        message = (
            f"Daily limit of {result.limit} generations reached. "
            f"Resets in {format_duration(result.retry_after or 0)}."
        )

    _raise_if_denied(request, result, message)
    return result
