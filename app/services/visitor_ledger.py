"""Redis-backed visitor ledger: visit counts, last detected profile and metadata per session."""

from __future__ import annotations

import json
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import DetectedProfile, DeviceInfo, ProfileType
from app.models.domain.visitor_domain import Visitor
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


def _count_key(session_id: str) -> str:
    return f"visitor:{session_id}:count"


def _profile_key(session_id: str) -> str:
    return f"visitor:{session_id}:profile"


def _meta_key(session_id: str) -> str:
    return f"visitor:{session_id}:meta"


def _active_key(session_id: str) -> str:
    return f"visitor:{session_id}:active"


class VisitorLedger:
    """
    Durable record of who a session is and how often it came back.

    The visit count is only ever incremented. A request counts as a new
    visit when the session has been inactive for VISIT_WINDOW_MINUTES.
    """

    def __init__(self, redis_client: FastRedisClient | None = None):
        self.redis = redis_client or fast_redis

    async def record_visit(
        self,
        session_id: str,
        ip_hash: str | None = None,
        device_info: DeviceInfo | None = None,
    ) -> Visitor:
        ttl = settings.session_ttl_seconds()
        window = settings.VISIT_WINDOW_MINUTES * 60

        is_new_visit = await self.redis.set_if_absent(_active_key(session_id), "1", window)
        if is_new_visit:
            visit_count = await self.redis.incr(_count_key(session_id))
            if visit_count == 1:
                await self.redis.expire(_count_key(session_id), ttl)
        else:
            # Sliding inactivity window
            await self.redis.expire(_active_key(session_id), window)
            visit_count = int(await self.redis.get(_count_key(session_id)) or 0)

        now = datetime.now(UTC)
        meta = await self._load_meta(session_id)
        meta.setdefault("first_seen", now.isoformat())
        meta["last_seen"] = now.isoformat()
        if ip_hash:
            meta["ip_hash"] = ip_hash
        if device_info is not None:
            meta["device_info"] = device_info.model_dump()

        await self.redis.set_with_ttl(_meta_key(session_id), json.dumps(meta), ttl)

        if is_new_visit:
            logger.info("Visit recorded", session_id=session_id[:8], visit_count=visit_count)

        return await self._build_visitor(session_id, visit_count, meta)

    async def get_visitor(self, session_id: str) -> Visitor | None:
        """Return the ledger entry, or None when the session was never seen (or expired)."""
        raw_count = await self.redis.get(_count_key(session_id))
        if raw_count is None:
            return None

        try:
            visit_count = int(raw_count)
        except ValueError:
            logger.warning("Invalid visit count in Redis", session_id=session_id[:8], value=raw_count)
            visit_count = 0

        meta = await self._load_meta(session_id)
        return await self._build_visitor(session_id, visit_count, meta)

    async def save_profile(self, session_id: str, profile: DetectedProfile) -> None:
        """Overwrite the last detected profile. The bypass flag is stored separately and is untouched."""
        ttl = settings.session_ttl_seconds()
        await self.redis.set_with_ttl(_profile_key(session_id), profile.profile_type.value, ttl)

        meta = await self._load_meta(session_id)
        meta["detection_confidence"] = profile.confidence
        meta["device_info"] = profile.device_info.model_dump()
        await self.redis.set_with_ttl(_meta_key(session_id), json.dumps(meta), ttl)

    async def _load_meta(self, session_id: str) -> dict:
        raw = await self.redis.get(_meta_key(session_id))
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt visitor metadata", session_id=session_id[:8])
            return {}

    async def _build_visitor(self, session_id: str, visit_count: int, meta: dict) -> Visitor:
        raw_profile = await self.redis.get(_profile_key(session_id))
        try:
            profile_type = ProfileType(raw_profile) if raw_profile else None
        except ValueError:
            profile_type = None

        return Visitor(
            session_id=session_id,
            visit_count=visit_count,
            profile_type=profile_type,
            detection_confidence=meta.get("detection_confidence", 0),
            ip_hash=meta.get("ip_hash"),
            device_info=DeviceInfo(**meta.get("device_info", {})),
            first_seen=meta.get("first_seen"),
            last_seen=meta.get("last_seen"),
        )


visitor_ledger = VisitorLedger()
