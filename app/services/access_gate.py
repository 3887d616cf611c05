"""
Admission policy for the letter generation feature.

A visitor gets in either by coming back often enough or by being detected
as one of the profiles the feature is built for (recruiters, technical
leadership, founders).
"""

from __future__ import annotations

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.access_domain import AccessDecision, AccessReason
from app.models.domain.profile_domain import BYPASS_ELIGIBLE_PROFILES, DetectedProfile
from app.services.profile.profile_detector import ProfileDetectorService
from app.services.visitor_ledger import VisitorLedger, visitor_ledger

logger = get_logger(__name__)


class AccessGateService:
    def __init__(
        self,
        ledger: VisitorLedger | None = None,
        detector: ProfileDetectorService | None = None,
        min_visits: int | None = None,
    ):
        self.ledger = ledger or visitor_ledger
        self._detector = detector
        self.min_visits = min_visits if min_visits is not None else settings.ACCESS_MIN_VISITS

    @property
    def detector(self) -> ProfileDetectorService:
        # Built lazily so importing the gate does not pick an enrichment provider
        if self._detector is None:
            self._detector = ProfileDetectorService()
        return self._detector

    async def evaluate(self, session_id: str | None) -> AccessDecision:
        """
        Decide whether a session may use the feature.

        Order matters: the cached bypass flag is checked before the ledger
        so a promoted visitor never waits on a lookup that could deny them.
        Store failures propagate to the caller.
        """
        if not session_id:
            return AccessDecision(granted=False, reason=AccessReason.NO_SESSION)

        bypass_enabled = settings.ACCESS_BYPASS_ON_PROFILE

        if bypass_enabled and await self.detector.has_bypass(session_id):
            return AccessDecision(
                granted=True,
                reason=AccessReason.PROFILE_BYPASS,
                required_visits=self.min_visits,
            )

        visitor = await self.ledger.get_visitor(session_id)
        if visitor is None:
            return AccessDecision(
                granted=False,
                reason=AccessReason.INSUFFICIENT_VISITS,
                visits_remaining=self.min_visits,
                required_visits=self.min_visits,
            )

        profile_type = visitor.profile_type.value if visitor.profile_type else None

        # A stored profile only counts when it was classified confidently enough to promote
        if (
            bypass_enabled
            and visitor.profile_type in BYPASS_ELIGIBLE_PROFILES
            and visitor.detection_confidence >= settings.ACCESS_BYPASS_CONFIDENCE
        ):
            return AccessDecision(
                granted=True,
                reason=AccessReason.PROFILE_BYPASS,
                visit_count=visitor.visit_count,
                required_visits=self.min_visits,
                profile_type=profile_type,
            )

        if visitor.visit_count >= self.min_visits:
            return AccessDecision(
                granted=True,
                reason=AccessReason.VISITS_THRESHOLD,
                visit_count=visitor.visit_count,
                required_visits=self.min_visits,
                profile_type=profile_type,
            )

        return AccessDecision(
            granted=False,
            reason=AccessReason.INSUFFICIENT_VISITS,
            visits_remaining=self.min_visits - visitor.visit_count,
            visit_count=visitor.visit_count,
            required_visits=self.min_visits,
            profile_type=profile_type,
        )

    async def promote_profile(self, session_id: str, profile: DetectedProfile) -> bool:
        """Turn a confident, eligible classification into a bypass flag. Returns True when promoted."""
        if not session_id or not self.detector.should_bypass(profile):
            return False

        await self.detector.store_bypass(session_id)
        logger.info(
            "Profile promoted to access bypass",
            session_id=session_id[:8],
            profile_type=profile.profile_type.value,
            confidence=profile.confidence,
        )
        return True


access_gate = AccessGateService()
