"""
Rate Limit Headers Middleware - Add rate limit info to responses.

This middleware adds standard rate limit headers to responses whose
request went through a rate limit dependency.

Headers added:
- X-RateLimit-Limit: Maximum requests allowed in the window
- X-RateLimit-Remaining: Remaining requests in current window
- X-RateLimit-Reset: Unix time at which the budget frees up
- Retry-After: Seconds to wait before retrying (if rate limited)

Usage:
    from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware

    app.add_middleware(RateLimitHeadersMiddleware)

Design:
- Reads rate_limit_info from request.state (set by rate limit dependencies)
- Adds headers to all responses (including 429 errors)
- Graceful if rate_limit_info is missing (no headers added)
"""

from starlette.middleware.base import BaseHTTPMiddleware

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add rate limit headers to all responses.

    When several limiters ran for one request, the last one to publish
    its info wins (the most specific check).
    """

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        rate_limit_info = getattr(request.state, "rate_limit_info", None)

        if rate_limit_info:
            if "limit" in rate_limit_info:
                response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])

            if "remaining" in rate_limit_info:
                response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])

            if rate_limit_info.get("reset_at"):
                response.headers["X-RateLimit-Reset"] = str(rate_limit_info["reset_at"])

            # Retry-After only when rate limited
            if not rate_limit_info.get("allowed", True) and rate_limit_info.get("retry_after"):
                response.headers["Retry-After"] = str(rate_limit_info["retry_after"])

        return response
