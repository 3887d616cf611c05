"""
Visitor Tracking Middleware - session cookie, visit counting and profile detection.

For every tracked request this middleware:
1. Reads or issues the session cookie
2. Classifies the visitor (cached per session for PROFILE_CACHE_TTL_HOURS)
3. Records the visit in the visitor ledger
4. Promotes a confident, eligible classification to an access bypass

Tracking is best effort: store, hashing and classification failures are
logged and the request continues untracked.

Usage:
    from app.middleware.visitor_tracking import VisitorTrackingMiddleware

    app.add_middleware(VisitorTrackingMiddleware)

    In endpoints:
        request.state.session_id
        request.state.visit_count
        request.state.detected_profile
"""

import re
import uuid

import structlog
from fastapi import Request
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import DetectedProfile
from app.security.hashing import HashingError, hash_ip
from app.services.access_gate import AccessGateService, access_gate
from app.services.infrastructure.redis_client import StoreUnavailableError
from app.services.visitor_ledger import VisitorLedger, visitor_ledger

logger = get_logger(__name__)

PROFILE_CACHE_PREFIX = "profile:session:"

# Health probes and admin calls are not visits
UNTRACKED_PATH_PREFIXES = ("/healthz", "/readyz", "/api/v1/admin", "/docs", "/openapi.json")

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{8,64}$")


class VisitorTrackingMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        ledger: VisitorLedger | None = None,
        gate: AccessGateService | None = None,
    ):
        super().__init__(app)
        self.ledger = ledger or visitor_ledger
        self.gate = gate or access_gate

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(UNTRACKED_PATH_PREFIXES):
            return await call_next(request)

        cookie_value = request.cookies.get(settings.SESSION_COOKIE_NAME)
        is_new_session = not (cookie_value and SESSION_ID_PATTERN.match(cookie_value))
        session_id = str(uuid.uuid4()) if is_new_session else cookie_value

        request.state.session_id = session_id
        request.state.visit_count = 0
        request.state.detected_profile = None
        structlog.contextvars.bind_contextvars(session_id=session_id[:8])

        await self._track(request, session_id)

        response = await call_next(request)

        if is_new_session:
            response.set_cookie(
                key=settings.SESSION_COOKIE_NAME,
                value=session_id,
                max_age=settings.session_ttl_seconds(),
                httponly=True,
                samesite="lax",
                secure=settings.environment == "production",
            )

        return response

    async def _track(self, request: Request, session_id: str) -> None:
        ip_address = getattr(request.state, "ip_address", None)
        user_agent = getattr(request.state, "user_agent", None) or request.headers.get("user-agent", "")
        referer = getattr(request.state, "referer", None) or request.headers.get("referer")

        try:
            ip_hash = hash_ip(ip_address) if ip_address else None
        except HashingError as e:
            logger.warning("IP hashing unavailable, visit recorded without it", error=str(e))
            ip_hash = None

        try:
            profile, is_fresh = await self._get_or_detect_profile(session_id, ip_address, user_agent, referer)
            visitor = await self.ledger.record_visit(session_id, ip_hash=ip_hash, device_info=profile.device_info)
            request.state.visit_count = visitor.visit_count
            request.state.detected_profile = profile
        except StoreUnavailableError as e:
            logger.warning("Visitor tracking skipped, store unavailable", error=str(e))
            return
        except Exception as e:
            logger.error(
                "Visitor tracking failed, request continues untracked",
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if not is_fresh:
            # Promotion happens once per classification, so the bypass window is not extended
            return

        try:
            await self.gate.promote_profile(session_id, profile)
        except StoreUnavailableError as e:
            logger.warning("Failed to store access bypass", error=str(e))
        except Exception as e:
            logger.error("Access bypass promotion failed", error=str(e), error_type=type(e).__name__)

    async def _get_or_detect_profile(
        self,
        session_id: str,
        ip_address: str | None,
        user_agent: str,
        referer: str | None,
    ) -> tuple[DetectedProfile, bool]:
        """Returns the profile and whether it was freshly classified."""
        cache_key = f"{PROFILE_CACHE_PREFIX}{session_id}"
        redis = self.ledger.redis

        cached = await redis.get(cache_key)
        if cached:
            try:
                return DetectedProfile.model_validate_json(cached), False
            except ValidationError:
                logger.warning("Discarding corrupt cached profile", session_id=session_id[:8])

        profile = await self.gate.detector.detect(ip_address, user_agent, referer)

        await redis.set_with_ttl(cache_key, profile.model_dump_json(), settings.PROFILE_CACHE_TTL_HOURS * 3600)
        await self.ledger.save_profile(session_id, profile)
        return profile, True
