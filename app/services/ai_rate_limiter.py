"""
Daily cap + cooldown limiter for letter generation, keyed by session.

check() is a pure pre-check and never touches the counters; commit() is
called only once the guarded action (the enqueue) actually happened.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_security_event
from app.models.domain.rate_limit_domain import RateLimitCode, RateLimitResult
from app.services.infrastructure.redis_client import FastRedisClient, StoreUnavailableError, fast_redis

logger = get_logger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def seconds_until_midnight(now: datetime) -> int:
    """Seconds until the next local midnight, never less than 1."""
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1, int((midnight - now).total_seconds()))


def format_duration(seconds: int) -> str:
    hours, remainder = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m"
    return f"{secs}s"


def _daily_key(session_id: str) -> str:
    return f"ratelimit:ai:{session_id}:daily"


def _cooldown_key(session_id: str) -> str:
    return f"ratelimit:ai:{session_id}:cooldown"


class AIRateLimiter:
    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        daily_limit: int | None = None,
        cooldown_seconds: int | None = None,
        clock: Callable[[], datetime] = _local_now,
    ):
        self.redis = redis_client or fast_redis
        self.daily_limit = daily_limit if daily_limit is not None else settings.AI_DAILY_LIMIT
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.AI_COOLDOWN_SECONDS
        )
        self.clock = clock

    async def check(self, session_id: str) -> RateLimitResult:
        """
        Cooldown first, then the daily cap.

        Store failures fail open: the request is allowed and the result
        carries the error so callers can tell.
        """
        now = self.clock()
        reset_at = int(now.timestamp()) + seconds_until_midnight(now)

        try:
            cooldown_ttl = await self.redis.ttl(_cooldown_key(session_id))
            if cooldown_ttl != -2:
                retry_after = max(1, cooldown_ttl)
                logger.info("AI generation in cooldown", session_id=session_id[:8], retry_after=retry_after)
                return RateLimitResult(
                    allowed=False,
                    limit=self.daily_limit,
                    remaining=max(0, self.daily_limit - await self._used(session_id)),
                    reset_at=reset_at,
                    retry_after=retry_after,
                    code=RateLimitCode.COOLDOWN_ACTIVE,
                )

            used = await self._used(session_id)
        except StoreUnavailableError as e:
            log_security_event(
                "ai_rate_limit_store_error",
                "AI rate limit check failed, allowing request",
                session_id=session_id[:8],
                error=str(e),
            )
            return RateLimitResult(
                allowed=True,
                limit=self.daily_limit,
                remaining=self.daily_limit,
                reset_at=reset_at,
                error=str(e),
            )

        if used >= self.daily_limit:
            retry_after = seconds_until_midnight(now)
            logger.info(
                "AI daily limit reached",
                session_id=session_id[:8],
                used=used,
                limit=self.daily_limit,
            )
            return RateLimitResult(
                allowed=False,
                limit=self.daily_limit,
                remaining=0,
                reset_at=reset_at,
                retry_after=retry_after,
                code=RateLimitCode.DAILY_LIMIT_REACHED,
            )

        # Remaining after this generation goes through
        return RateLimitResult(
            allowed=True,
            limit=self.daily_limit,
            remaining=self.daily_limit - used - 1,
            reset_at=reset_at,
        )

    async def commit(self, session_id: str) -> int | None:
        """
        Count one generation and start the cooldown.

        Returns the new daily count, or None if the store failed (the
        generation already happened, so a lost commit is only logged).
        """
        daily_key = _daily_key(session_id)
        try:
            count = await self.redis.incr(daily_key)
            if count == 1:
                await self.redis.expire(daily_key, seconds_until_midnight(self.clock()))
            await self.redis.set_with_ttl(_cooldown_key(session_id), "1", self.cooldown_seconds)
        except StoreUnavailableError as e:
            log_security_event(
                "ai_rate_limit_store_error",
                "Failed to commit AI generation usage",
                session_id=session_id[:8],
                error=str(e),
            )
            return None

        logger.info("AI generation usage committed", session_id=session_id[:8], daily_count=count)
        return count

    async def status(self, session_id: str) -> dict:
        """Usage summary for the status endpoint. Store errors propagate."""
        now = self.clock()
        until_midnight = seconds_until_midnight(now)
        used = await self._used(session_id)
        cooldown_ttl = await self.redis.ttl(_cooldown_key(session_id))
        cooldown_active = cooldown_ttl != -2

        return {
            "daily_limit": self.daily_limit,
            "daily_used": used,
            "daily_remaining": max(0, self.daily_limit - used),
            "reset_at": int(now.timestamp()) + until_midnight,
            "reset_in": format_duration(until_midnight),
            "cooldown_active": cooldown_active,
            "cooldown_remaining_seconds": max(0, cooldown_ttl) if cooldown_active else 0,
        }

    async def reset(self, session_id: str) -> int:
        """Clear the daily counter and cooldown for a session. Idempotent."""
        deleted = await self.redis.delete(_daily_key(session_id), _cooldown_key(session_id))
        logger.info("AI usage reset", session_id=session_id[:8], deleted=deleted)
        return deleted

    async def _used(self, session_id: str) -> int:
        raw = await self.redis.get(_daily_key(session_id))
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("Invalid AI daily counter in Redis", session_id=session_id[:8], value=raw)
            return 0


ai_rate_limiter = AIRateLimiter()
