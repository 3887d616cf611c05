"""
Middleware components for request processing.

This package contains middleware for:
- Request context (request ID, IP address, user agent, referer)
- Visitor tracking (session cookie, visit counting, profile detection)
- Rate limiting (sliding window tiers, daily cap + cooldown, response headers)
"""

from app.middleware.rate_limit_dependencies import (
    ai_generation_limit,
    rate_limit_ai_attempts,
    rate_limit_api,
    rate_limit_global,
    require_ai_access,
    require_session,
)
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from app.middleware.rate_limiter import rate_limiter
from app.middleware.request_context import RequestContextMiddleware
from app.middleware.visitor_tracking import VisitorTrackingMiddleware

__all__ = [
    "RequestContextMiddleware",
    "VisitorTrackingMiddleware",
    "RateLimitHeadersMiddleware",
    "rate_limiter",
    "rate_limit_global",
    "rate_limit_api",
    "rate_limit_ai_attempts",
    "require_session",
    "require_ai_access",
    "ai_generation_limit",
]
