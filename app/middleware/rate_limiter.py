"""
Rate Limiter - Redis-based sliding window limiting with ban escalation.

One limiter serves every endpoint class ("tier"): global traffic by IP,
letter generation attempts by session, and the JSON API by IP. Tiers are
defined in Settings.get_rate_limit_tiers().

Design:
- Sliding window algorithm over Redis sorted sets (one atomic Lua call per check)
- Violation counter per identifier; reaching the tier threshold sets a ban
- A ban denies unconditionally until it expires, whatever the window says
- Fail-open behavior (if Redis is down, allow requests and log it)

Usage:
    from app.middleware.rate_limiter import rate_limiter

    result = await rate_limiter.check("203.0.113.7", "global")
    if not result.allowed:
        raise HTTPException(429, detail=...)
"""

import time
import uuid
from collections.abc import Callable

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_security_event
from app.models.domain.rate_limit_domain import RateLimitCode, RateLimitResult, RateLimitTier
from app.services.infrastructure.redis_client import FastRedisClient, StoreUnavailableError, fast_redis

logger = get_logger(__name__)

# The timestamp set outlives its window by this much
KEY_TTL_BUFFER_SECONDS = 60


class UnknownTierError(ValueError):
    """Raised for a tier name that is not configured."""


class RateLimiter:
    """
    Sliding window limiter with violation tracking and temporary bans.

    Example:
        With the global tier (100 req / 60s), a client that made 100
        requests at 10:00:00 is admitted again from 10:01:00 onward. Each
        denied request counts as a violation; five violations within ten
        minutes ban the IP for an hour.
    """

    def __init__(
        self,
        tiers: dict[str, dict] | None = None,
        redis_client: FastRedisClient | None = None,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        tier_config = tiers if tiers is not None else settings.get_rate_limit_tiers()
        self.tiers = {name: RateLimitTier.from_config(name, config) for name, config in tier_config.items()}
        self.redis = redis_client or fast_redis
        self.fail_open = fail_open
        self.clock = clock

    def get_tier(self, tier_name: str) -> RateLimitTier:
        try:
            return self.tiers[tier_name]
        except KeyError as e:
            raise UnknownTierError(f"Unknown rate limit tier: {tier_name}") from e

    async def check(self, identifier: str, tier_name: str) -> RateLimitResult:
        """
        Check and record one request for an identifier in a tier.

        Args:
            identifier: Client IP or session id, depending on the tier
            tier_name: "global", "ai" or "api"

        Returns:
            RateLimitResult; when denied, retry_after is set and code tells
            a ban apart from a plain window overflow.
        """
        tier = self.get_tier(tier_name)
        now = self.clock()

        try:
            ban_ttl = await self.redis.ttl(tier.ban_key(identifier))
            if ban_ttl != -2:
                return self._banned_result(tier, identifier, now, ban_ttl)

            allowed, count, oldest = await self.redis.sliding_window_hit(
                tier.window_key(identifier),
                tier.limit,
                tier.window_seconds,
                now,
                f"{now}:{uuid.uuid4().hex}",
                tier.window_seconds + KEY_TTL_BUFFER_SECONDS,
            )

            reset_at = int((oldest or now) + tier.window_seconds)

            if allowed:
                return RateLimitResult(
                    allowed=True,
                    limit=tier.limit,
                    remaining=max(0, tier.limit - count - 1),
                    reset_at=reset_at,
                )

            retry_after = max(1, int(reset_at - now)) if oldest else tier.window_seconds
            banned = await self._record_violation(tier, identifier)

            if banned:
                return RateLimitResult(
                    allowed=False,
                    limit=tier.limit,
                    remaining=0,
                    reset_at=int(now) + tier.ban_seconds,
                    retry_after=tier.ban_seconds,
                    code=RateLimitCode.TEMPORARILY_BANNED,
                    banned=True,
                )

            logger.warning(
                "Rate limit exceeded",
                tier=tier.name,
                identifier=identifier[:16],
                limit=tier.limit,
                retry_after=retry_after,
            )
            return RateLimitResult(
                allowed=False,
                limit=tier.limit,
                remaining=0,
                reset_at=reset_at,
                retry_after=retry_after,
                code=RateLimitCode.RATE_LIMIT_EXCEEDED,
            )

        except StoreUnavailableError as e:
            log_security_event(
                "rate_limit_store_error",
                "Rate limiter store failure",
                tier=tier.name,
                identifier=identifier[:16],
                fail_open=self.fail_open,
                error=str(e),
            )
            if self.fail_open:
                return RateLimitResult(
                    allowed=True,
                    limit=tier.limit,
                    remaining=tier.limit,
                    reset_at=int(now) + tier.window_seconds,
                    error="rate_limiter_error",
                )
            return RateLimitResult(
                allowed=False,
                limit=tier.limit,
                remaining=0,
                reset_at=int(now) + tier.window_seconds,
                retry_after=tier.window_seconds,
                code=RateLimitCode.RATE_LIMIT_EXCEEDED,
                error="rate_limiter_error",
            )

    def _banned_result(self, tier: RateLimitTier, identifier: str, now: float, ban_ttl: int) -> RateLimitResult:
        retry_after = ban_ttl if ban_ttl > 0 else tier.ban_seconds
        log_security_event(
            "banned_access_attempt",
            "Request from banned identifier",
            tier=tier.name,
            identifier=identifier[:16],
            retry_after=retry_after,
        )
        return RateLimitResult(
            allowed=False,
            limit=tier.limit,
            remaining=0,
            reset_at=int(now) + retry_after,
            retry_after=retry_after,
            code=RateLimitCode.TEMPORARILY_BANNED,
            banned=True,
        )

    async def _record_violation(self, tier: RateLimitTier, identifier: str) -> bool:
        """Count a denied request; returns True when it triggered a ban."""
        if not tier.ban_enabled:
            return False

        violations_key = tier.violations_key(identifier)
        violations = await self.redis.incr(violations_key)
        if violations == 1:
            await self.redis.expire(violations_key, tier.violation_ttl_seconds)

        log_security_event(
            "rate_limit_violation",
            "Rate limit violation recorded",
            tier=tier.name,
            identifier=identifier[:16],
            violations=violations,
            threshold=tier.ban_threshold,
        )

        if violations < tier.ban_threshold:
            return False

        await self.redis.set_with_ttl(tier.ban_key(identifier), "1", tier.ban_seconds)
        log_security_event(
            "rate_limit_ban",
            "Identifier temporarily banned after repeated violations",
            tier=tier.name,
            identifier=identifier[:16],
            violations=violations,
            ban_seconds=tier.ban_seconds,
        )
        return True

    async def get_info(self, identifier: str, tier_name: str) -> dict:
        """Read-only usage and ban status. Store errors propagate."""
        tier = self.get_tier(tier_name)
        now = self.clock()

        used = await self.redis.count_in_window(
            tier.window_key(identifier), now - tier.window_seconds, now
        )
        ban_ttl = await self.redis.ttl(tier.ban_key(identifier))
        violations = await self.redis.get(tier.violations_key(identifier))

        return {
            "tier": tier.name,
            "identifier": identifier,
            "limit": tier.limit,
            "window_seconds": tier.window_seconds,
            "used": used,
            "remaining": max(0, tier.limit - used),
            "violations": int(violations or 0),
            "banned": ban_ttl != -2,
            "ban_remaining_seconds": max(0, ban_ttl) if ban_ttl != -2 else 0,
        }

    async def reset(self, identifier: str, tier_name: str) -> int:
        """Clear window, violations and ban for an identifier. Idempotent."""
        tier = self.get_tier(tier_name)
        deleted = await self.redis.delete(
            tier.window_key(identifier),
            tier.violations_key(identifier),
            tier.ban_key(identifier),
        )
        logger.info("Rate limit state reset", tier=tier.name, identifier=identifier[:16], deleted=deleted)
        return deleted


# Global singleton
rate_limiter = RateLimiter(fail_open=settings.RATE_LIMIT_FAIL_OPEN)
