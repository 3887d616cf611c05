"""
RequestContext Middleware - per-request metadata for limiting and profiling.

Populates request.state before anything else runs:
- request_id: echoed back as X-Request-ID and bound into the structlog context
- ip_address: client IP, keying the IP rate limit tiers and enrichment lookups
- user_agent / referer: raw inputs of profile detection

request.state namespace:
- request_id, ip_address, user_agent, referer: RequestContextMiddleware
- session_id, visit_count, detected_profile: VisitorTrackingMiddleware
- rate_limit_info, access_decision: rate limit dependencies
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def extract_client_ip(request: Request) -> str | None:
    """
    Client IP with proxy spoofing protection.

    X-Forwarded-For is honoured only when TRUST_X_FORWARDED_FOR is on and
    the direct peer is one of TRUSTED_PROXY_IPS.
    """
    peer_ip = request.client.host if request.client else None

    if not settings.TRUST_X_FORWARDED_FOR or peer_ip not in settings.TRUSTED_PROXY_IPS:
        return peer_ip

    forwarded_for = request.headers.get("x-forwarded-for")
    if not forwarded_for:
        return peer_ip

    # "client, proxy1, proxy2": the left-most entry is the original client
    client_ip = forwarded_for.split(",")[0].strip()
    logger.debug("Using X-Forwarded-For from trusted proxy", proxy_ip=peer_ip, client_ip=client_ip)
    return client_ip or peer_ip


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        request.state.ip_address = extract_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")
        request.state.referer = request.headers.get("referer")

        # Fresh logging context per request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.debug("Request started", method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
