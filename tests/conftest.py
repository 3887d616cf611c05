from datetime import UTC, datetime

import pytest

from app.auth.verify import admin_dependency
from app.services.infrastructure.redis_client import StoreUnavailableError
from app.services.profile.enrichment_client import NullEnrichmentClient
from app.services.profile.profile_detector import ProfileDetectorService

FAKE_EPOCH = 1_760_000_000.0


class FakeRedis:
    """
    In-memory stand-in for FastRedisClient with a manual clock.

    Keys expire against `self.now`; advance it with `advance()`. Set
    `fail = True` to make every call raise StoreUnavailableError.
    """

    def __init__(self, now: float = FAKE_EPOCH):
        self.now = now
        self.store: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.expiry: dict[str, float] = {}
        self.fail = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self, operation: str) -> None:
        if self.fail:
            raise StoreUnavailableError(f"Redis {operation} failed: connection refused", operation=operation)

    def _purge(self, key: str) -> None:
        expires_at = self.expiry.get(key)
        if expires_at is not None and expires_at <= self.now:
            self.store.pop(key, None)
            self.lists.pop(key, None)
            self.zsets.pop(key, None)
            self.expiry.pop(key, None)

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self.store or key in self.lists or key in self.zsets

    async def ping(self) -> bool:
        return not self.fail

    async def get(self, key: str) -> str | None:
        self._check("GET")
        self._purge(key)
        return self.store.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self._check("SET")
        self.store[key] = value
        if ttl_s:
            self.expiry[key] = self.now + ttl_s
        else:
            self.expiry.pop(key, None)
        return True

    async def set_with_expire_at(self, key: str, value: str, expire_at: int) -> bool:
        self._check("SET EXAT")
        self.store[key] = value
        self.expiry[key] = float(expire_at)
        self._purge(key)
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        self._check("SET NX")
        if self._exists(key):
            return False
        self.store[key] = value
        self.expiry[key] = self.now + ttl_s
        return True

    async def delete(self, *keys: str) -> int:
        self._check("DELETE")
        deleted = 0
        for key in keys:
            if self._exists(key):
                deleted += 1
            self.store.pop(key, None)
            self.lists.pop(key, None)
            self.zsets.pop(key, None)
            self.expiry.pop(key, None)
        return deleted

    async def exists(self, key: str) -> bool:
        self._check("EXISTS")
        return self._exists(key)

    async def ttl(self, key: str) -> int:
        self._check("TTL")
        if not self._exists(key):
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - self.now)

    async def incr(self, key: str) -> int:
        self._check("INCR")
        self._purge(key)
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key: str, ttl_s: int) -> bool:
        self._check("EXPIRE")
        if not self._exists(key):
            return False
        self.expiry[key] = self.now + ttl_s
        return True

    async def push_to_list(self, key: str, value: str, left: bool = False) -> int:
        self._check("LIST push")
        items = self.lists.setdefault(key, [])
        if left:
            items.insert(0, value)
        else:
            items.append(value)
        return len(items)

    async def pop_from_list(self, key: str, timeout: int = 0) -> str | None:
        self._check("LIST pop")
        self._purge(key)
        items = self.lists.get(key)
        if not items:
            return None
        value = items.pop(0)
        if not items:
            self.lists.pop(key, None)
        return value

    async def list_length(self, key: str) -> int:
        self._check("LLEN")
        self._purge(key)
        return len(self.lists.get(key, []))

    async def sliding_window_hit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        now: float,
        member: str,
        ttl_s: int,
    ) -> tuple[bool, int, float]:
        self._check("EVAL sliding window")
        self._purge(key)
        entries = self.zsets.setdefault(key, {})
        for existing, score in list(entries.items()):
            if score <= now - window_seconds:
                del entries[existing]

        count = len(entries)
        oldest = min(entries.values()) if entries else 0.0
        if count >= limit:
            return False, count, oldest

        entries[member] = now
        self.expiry[key] = self.now + ttl_s
        return True, count, oldest

    async def count_in_window(self, key: str, window_start: float, window_end: float) -> int:
        self._check("ZCOUNT")
        self._purge(key)
        entries = self.zsets.get(key, {})
        return sum(1 for score in entries.values() if window_start <= score <= window_end)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def patch_stores(monkeypatch, fake_redis):
    """Point every service singleton at one FakeRedis; enrichment is disabled."""
    from app.middleware.rate_limiter import rate_limiter
    from app.services.access_gate import access_gate
    from app.services.ai_rate_limiter import ai_rate_limiter
    from app.services.letter_queue import letter_queue
    from app.services.visitor_ledger import visitor_ledger

    for singleton in (visitor_ledger, ai_rate_limiter, rate_limiter, letter_queue):
        monkeypatch.setattr(singleton, "redis", fake_redis)

    detector = ProfileDetectorService(enrichment_client=NullEnrichmentClient(), redis_client=fake_redis)
    monkeypatch.setattr(access_gate, "_detector", detector)
    monkeypatch.setattr(rate_limiter, "clock", lambda: fake_redis.now)
    monkeypatch.setattr(ai_rate_limiter, "clock", lambda: datetime.fromtimestamp(fake_redis.now).astimezone())
    monkeypatch.setattr(letter_queue, "clock", lambda: datetime.fromtimestamp(fake_redis.now, UTC))
    monkeypatch.setattr("app.security.hashing.settings.HASHING_SECRET", "t" * 32, raising=False)
    return fake_redis


@pytest.fixture
def admin_override():
    def _override():
        return None

    return _override


@pytest.fixture
def apply_admin_override(admin_override):
    def _apply(app):
        app.dependency_overrides[admin_dependency] = admin_override

    return _apply
