"""
Rate limit shapes shared by the daily/cooldown limiter and the sliding-window tiers.
"""

from dataclasses import dataclass
from enum import StrEnum


class RateLimitCode(StrEnum):
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TEMPORARILY_BANNED = "TEMPORARILY_BANNED"


@dataclass(slots=True, frozen=True)
class RateLimitTier:
    """Configuration of one sliding-window endpoint class."""

    name: str
    key_prefix: str
    identifier: str  # "ip" or "session"
    limit: int
    window_seconds: int
    ban_enabled: bool = False
    ban_threshold: int = 0
    ban_seconds: int = 0
    violation_ttl_seconds: int = 0

    @classmethod
    def from_config(cls, name: str, config: dict) -> "RateLimitTier":
        return cls(name=name, **config)

    def window_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"

    def violations_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:violations:{identifier}"

    def ban_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:ban:{identifier}"


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int | None = None
    code: RateLimitCode | None = None
    banned: bool = False
    error: str | None = None

    def to_info(self) -> dict:
        """Dict form consumed by the headers middleware and API responses."""
        info = {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "retry_after": self.retry_after,
        }
        if self.code:
            info["code"] = self.code.value
        if self.banned:
            info["banned"] = True
        if self.error:
            info["error"] = self.error
        return info
