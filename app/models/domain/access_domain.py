from dataclasses import dataclass
from enum import StrEnum


class AccessReason(StrEnum):
    PROFILE_BYPASS = "profile_bypass"
    VISITS_THRESHOLD = "visits_threshold"
    INSUFFICIENT_VISITS = "insufficient_visits"
    NO_SESSION = "no_session"


@dataclass(slots=True)
class AccessDecision:
    """Outcome of the access gate for one request. Never persisted."""

    granted: bool
    reason: AccessReason
    visits_remaining: int = 0
    visit_count: int = 0
    required_visits: int = 0
    profile_type: str | None = None

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "reason": self.reason.value,
            "visits_remaining": self.visits_remaining,
        }
