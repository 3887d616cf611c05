import pytest

from app.models.domain.profile_domain import DetectedProfile, DeviceInfo, ProfileType
from app.services.visitor_ledger import VisitorLedger


@pytest.fixture
def ledger(fake_redis):
    return VisitorLedger(redis_client=fake_redis)


@pytest.mark.asyncio
async def test_unknown_session_has_no_entry(ledger):
    assert await ledger.get_visitor("never-seen") is None


@pytest.mark.asyncio
async def test_first_visit_creates_entry(ledger, fake_redis):
    visitor = await ledger.record_visit(
        "session-1",
        ip_hash="abc123",
        device_info=DeviceInfo(browser="Firefox", os="Linux"),
    )

    assert visitor.visit_count == 1
    assert visitor.ip_hash == "abc123"
    assert visitor.device_info.browser == "Firefox"
    assert visitor.first_seen is not None
    assert await fake_redis.ttl("visitor:session-1:count") == 30 * 24 * 3600


@pytest.mark.asyncio
async def test_requests_within_window_are_one_visit(ledger, fake_redis):
    await ledger.record_visit("session-1")
    fake_redis.advance(10 * 60)
    visitor = await ledger.record_visit("session-1")

    assert visitor.visit_count == 1


@pytest.mark.asyncio
async def test_return_after_inactivity_counts_again(ledger, fake_redis):
    await ledger.record_visit("session-1")
    fake_redis.advance(31 * 60)
    await ledger.record_visit("session-1")
    fake_redis.advance(31 * 60)
    visitor = await ledger.record_visit("session-1")

    assert visitor.visit_count == 3


@pytest.mark.asyncio
async def test_activity_keeps_the_visit_open(ledger, fake_redis):
    await ledger.record_visit("session-1")
    for _ in range(3):
        fake_redis.advance(20 * 60)
        visitor = await ledger.record_visit("session-1")

    # Never 30 minutes idle, so still the first visit
    assert visitor.visit_count == 1


@pytest.mark.asyncio
async def test_save_profile_is_read_back(ledger):
    await ledger.record_visit("session-1")
    await ledger.save_profile(
        "session-1",
        DetectedProfile(profile_type=ProfileType.CTO, confidence=72, device_info=DeviceInfo(browser="Safari")),
    )

    visitor = await ledger.get_visitor("session-1")

    assert visitor.profile_type == ProfileType.CTO
    assert visitor.detection_confidence == 72
    assert visitor.device_info.browser == "Safari"
    assert visitor.is_target_profile is True


@pytest.mark.asyncio
async def test_later_profile_overwrites_earlier(ledger):
    await ledger.record_visit("session-1")
    await ledger.save_profile("session-1", DetectedProfile(profile_type=ProfileType.RECRUITER, confidence=80))
    await ledger.save_profile("session-1", DetectedProfile(profile_type=ProfileType.DEVELOPER, confidence=6))

    visitor = await ledger.get_visitor("session-1")

    assert visitor.profile_type == ProfileType.DEVELOPER
    assert visitor.is_target_profile is False


@pytest.mark.asyncio
async def test_corrupt_metadata_is_ignored(ledger, fake_redis):
    await ledger.record_visit("session-1")
    fake_redis.store["visitor:session-1:meta"] = "{not json"

    visitor = await ledger.get_visitor("session-1")

    assert visitor.visit_count == 1
    assert visitor.ip_hash is None


@pytest.mark.asyncio
async def test_entry_expires_with_the_session(ledger, fake_redis):
    await ledger.record_visit("session-1")
    fake_redis.advance(30 * 24 * 3600 + 1)

    assert await ledger.get_visitor("session-1") is None
