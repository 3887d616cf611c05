from datetime import UTC, datetime

import pytest

from app.models.domain.rate_limit_domain import RateLimitCode
from app.services.ai_rate_limiter import AIRateLimiter, format_duration, seconds_until_midnight

# 22:00, two hours before the daily reset
FIXED_NOW = datetime(2026, 3, 10, 22, 0, 0, tzinfo=UTC)


@pytest.fixture
def limiter(fake_redis):
    return AIRateLimiter(redis_client=fake_redis, daily_limit=5, cooldown_seconds=120, clock=lambda: FIXED_NOW)


def test_seconds_until_midnight():
    assert seconds_until_midnight(FIXED_NOW) == 7200
    assert seconds_until_midnight(datetime(2026, 3, 10, 23, 59, 59, 500000, tzinfo=UTC)) == 1
    assert seconds_until_midnight(datetime(2026, 3, 10, 0, 0, 0, tzinfo=UTC)) == 86400


def test_format_duration():
    assert format_duration(7200) == "2h00m"
    assert format_duration(3725) == "1h02m"
    assert format_duration(125) == "2m"
    assert format_duration(5) == "5s"


@pytest.mark.asyncio
async def test_first_request_is_allowed(limiter):
    result = await limiter.check("session-1")

    assert result.allowed is True
    assert result.remaining == 4
    assert result.reset_at == int(FIXED_NOW.timestamp()) + 7200


@pytest.mark.asyncio
async def test_check_does_not_consume(limiter):
    for _ in range(10):
        result = await limiter.check("session-1")

    assert result.allowed is True
    assert result.remaining == 4


@pytest.mark.asyncio
async def test_commit_starts_cooldown(limiter, fake_redis):
    count = await limiter.commit("session-1")
    result = await limiter.check("session-1")

    assert count == 1
    assert result.allowed is False
    assert result.code == RateLimitCode.COOLDOWN_ACTIVE
    assert result.retry_after == 120
    assert await fake_redis.ttl("ratelimit:ai:session-1:daily") == 7200


@pytest.mark.asyncio
async def test_allowed_again_after_cooldown(limiter, fake_redis):
    await limiter.commit("session-1")
    fake_redis.advance(121)

    result = await limiter.check("session-1")

    assert result.allowed is True
    assert result.remaining == 3


@pytest.mark.asyncio
async def test_daily_cap_blocks_until_midnight(limiter, fake_redis):
    for _ in range(5):
        await limiter.commit("session-1")
        fake_redis.advance(121)

    result = await limiter.check("session-1")

    assert result.allowed is False
    assert result.code == RateLimitCode.DAILY_LIMIT_REACHED
    assert result.remaining == 0
    assert result.retry_after == 7200


@pytest.mark.asyncio
async def test_sessions_are_independent(limiter):
    await limiter.commit("session-1")

    result = await limiter.check("session-2")

    assert result.allowed is True


@pytest.mark.asyncio
async def test_store_failure_fails_open(limiter, fake_redis):
    fake_redis.fail = True

    result = await limiter.check("session-1")

    assert result.allowed is True
    assert result.error is not None
    assert await limiter.commit("session-1") is None


@pytest.mark.asyncio
async def test_status_reports_usage(limiter):
    await limiter.commit("session-1")

    status = await limiter.status("session-1")

    assert status["daily_used"] == 1
    assert status["daily_remaining"] == 4
    assert status["cooldown_active"] is True
    assert status["cooldown_remaining_seconds"] == 120
    assert status["reset_in"] == "2h00m"


@pytest.mark.asyncio
async def test_reset_clears_counter_and_cooldown(limiter):
    await limiter.commit("session-1")

    deleted = await limiter.reset("session-1")
    result = await limiter.check("session-1")

    assert deleted == 2
    assert result.allowed is True
    assert result.remaining == 4
