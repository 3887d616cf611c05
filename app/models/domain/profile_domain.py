from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ProfileType(StrEnum):
    RECRUITER = "recruiter"
    CTO = "cto"
    TECH_LEAD = "tech_lead"
    CEO = "ceo"
    DEVELOPER = "developer"
    OTHER = "other"


# Profiles that skip the visit-count requirement at sufficient confidence
BYPASS_ELIGIBLE_PROFILES = frozenset(
    {ProfileType.RECRUITER, ProfileType.TECH_LEAD, ProfileType.CTO, ProfileType.CEO}
)


class DetectionSource(StrEnum):
    BOT_RECRUITER_USER_AGENT = "bot_recruiter_user_agent"
    USER_AGENT_PATTERN = "user_agent_pattern"
    REFERER_ANALYSIS = "referer_analysis"
    IP_ENRICHMENT = "ip_enrichment"


class DeviceInfo(BaseModel):
    """Device summary parsed from the user agent."""

    browser: str = "Unknown"
    os: str = "Unknown"
    device_type: str = "desktop"  # mobile, tablet, desktop, tool
    is_bot: bool = False


class DetectedProfile(BaseModel):
    """
    Result of classifying a visitor from request metadata.

    Confidence is clamped to [0, 100] on construction so no combination of
    signals can report more than certainty.
    """

    profile_type: ProfileType = ProfileType.OTHER
    confidence: int = 0
    detection_sources: list[DetectionSource] = Field(default_factory=list)
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)
    enrichment_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, value: int) -> int:
        return max(0, min(100, value))

    @property
    def is_bypass_eligible_type(self) -> bool:
        return self.profile_type in BYPASS_ELIGIBLE_PROFILES
