from datetime import datetime

from pydantic import BaseModel, Field

from app.models.domain.profile_domain import DeviceInfo, ProfileType


class Visitor(BaseModel):
    """Identity anchor for a browser session, as recorded in the visitor ledger."""

    session_id: str
    visit_count: int = 0
    profile_type: ProfileType | None = None
    detection_confidence: int = 0
    ip_hash: str | None = None
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)
    first_seen: datetime | None = None
    last_seen: datetime | None = None

    @property
    def is_target_profile(self) -> bool:
        return self.profile_type not in (None, ProfileType.OTHER, ProfileType.DEVELOPER)
