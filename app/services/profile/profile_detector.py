# app/services/profile/profile_detector.py
"""
Visitor profile classification from request metadata.

Three independent signals are scored and combined:

    user agent   (max 30)  weight 0.3
    referer      (max 20)  weight 0.2
    enrichment   (~50)     weight 0.5

A known recruiting bot short-circuits to a fixed recruiter result. The
scoring functions are pure; ProfileDetectorService adds the enrichment
lookup and the bypass flag persistence around them.
"""

import re
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.profile_domain import (
    BYPASS_ELIGIBLE_PROFILES,
    DetectedProfile,
    DetectionSource,
    DeviceInfo,
    ProfileType,
)
from app.security.hashing import HashingError, hash_ip
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis
from app.services.profile.enrichment_client import (
    EnrichmentClient,
    EnrichmentError,
    build_enrichment_client,
)
from app.services.profile.user_agent_parser import UserAgentParser, UserAgentParserProtocol

logger = get_logger(__name__)

RECRUITER_BOT_CONFIDENCE = 80

USER_AGENT_WEIGHT = 0.3
REFERER_WEIGHT = 0.2
ENRICHMENT_WEIGHT = 0.5

# Matched case-sensitively, as the vendors publish them
RECRUITER_BOT_SIGNATURES = (
    "LinkedInBot",
    "HubSpot",
    "Workable",
    "LeverBot",
    "SmashFly",
    "PeopleClick",
    "JobviteBot",
)

RECRUITER_UA_PATTERNS = (
    "linkedinapp",
    "linkedin",
    "greenhouse",
    "lever",
    "workday",
    "applicantstack",
    "jobvite",
    "recruiting",
)

DEVELOPER_UA_PATTERNS = ("postman", "curl", "wget", "httpie", "insomnia")

JOB_BOARD_DOMAINS = ("indeed.com", "glassdoor.com", "monster.com", "welcometothejungle.com")

BYPASS_KEY_PREFIX = "access:bypass:"


def _has_word(text: str, word: str) -> bool:
    # "cto" must not match "director"
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def is_recruiter_bot(user_agent: str) -> bool:
    return any(signature in (user_agent or "") for signature in RECRUITER_BOT_SIGNATURES)


def score_user_agent(user_agent: str) -> tuple[int, ProfileType]:
    """Recruiting tools outrank developer tools; ordinary browsers score nothing."""
    ua_lower = (user_agent or "").lower()

    if any(pattern in ua_lower for pattern in RECRUITER_UA_PATTERNS):
        return 30, ProfileType.RECRUITER

    if any(pattern in ua_lower for pattern in DEVELOPER_UA_PATTERNS):
        return 20, ProfileType.DEVELOPER

    return 0, ProfileType.OTHER


def score_referer(referer: str | None) -> tuple[int, ProfileType]:
    if not referer:
        return 0, ProfileType.OTHER

    ref_lower = referer.lower()

    if "linkedin.com" in ref_lower:
        if "/jobs" in ref_lower or "/recruiter" in ref_lower or "/talent" in ref_lower:
            return 20, ProfileType.RECRUITER
        return 10, ProfileType.RECRUITER

    if any(domain in ref_lower for domain in JOB_BOARD_DOMAINS):
        return 15, ProfileType.RECRUITER

    if "github.com" in ref_lower:
        return 10, ProfileType.DEVELOPER

    return 0, ProfileType.OTHER


def score_enrichment(data: dict[str, Any] | None) -> tuple[int, ProfileType]:
    """
    Score enrichment attributes.

    Company category and job title add up; the job title decides the type
    when both fire because it describes the person rather than the employer.
    """
    if not data:
        return 0, ProfileType.OTHER

    company_type = str(data.get("company_type") or "").lower()
    industry = str(data.get("industry") or "").lower()
    job_title = str(data.get("job_title") or "").lower()

    score = 0
    profile_type = ProfileType.OTHER

    if "recruiting" in company_type or "recruiting" in industry or "staffing" in industry:
        score += 40
        profile_type = ProfileType.RECRUITER

    if job_title:
        if _has_word(job_title, "cto") or "chief technology" in job_title:
            score += 50
            profile_type = ProfileType.CTO
        elif _has_word(job_title, "ceo") or "chief executive" in job_title or "founder" in job_title:
            score += 50
            profile_type = ProfileType.CEO
        elif any(
            keyword in job_title
            for keyword in ("tech lead", "lead developer", "engineering manager", "vp eng", "head of engineering")
        ):
            score += 40
            profile_type = ProfileType.TECH_LEAD
        elif _has_word(job_title, "hr") or any(
            keyword in job_title for keyword in ("recruiter", "talent", "human resources")
        ):
            score += 40
            profile_type = ProfileType.RECRUITER

    return score, profile_type


def calculate_confidence(user_agent_score: int, referer_score: int, enrichment_score: int) -> int:
    confidence = round(
        user_agent_score * USER_AGENT_WEIGHT
        + referer_score * REFERER_WEIGHT
        + enrichment_score * ENRICHMENT_WEIGHT
    )
    return max(0, min(100, confidence))


def classify_profile(
    user_agent: str,
    device_info: DeviceInfo,
    referer: str | None = None,
    enrichment: dict[str, Any] | None = None,
) -> DetectedProfile:
    """
    Combine the three signals into a DetectedProfile.

    Pure over its inputs: the same user agent, referer and enrichment map
    always classify the same way.
    """
    if device_info.is_bot and is_recruiter_bot(user_agent):
        return DetectedProfile(
            profile_type=ProfileType.RECRUITER,
            confidence=RECRUITER_BOT_CONFIDENCE,
            detection_sources=[DetectionSource.BOT_RECRUITER_USER_AGENT],
            device_info=device_info,
        )

    sources: list[DetectionSource] = []
    profile_type = ProfileType.OTHER

    ua_score, ua_type = score_user_agent(user_agent)
    if ua_score > 0:
        profile_type = ua_type
        sources.append(DetectionSource.USER_AGENT_PATTERN)

    referer_score, referer_type = score_referer(referer)
    if referer_score > 0:
        if referer_score > ua_score and referer_type != ProfileType.OTHER:
            profile_type = referer_type
        sources.append(DetectionSource.REFERER_ANALYSIS)

    enrichment_score, enrichment_type = score_enrichment(enrichment)
    if enrichment_score > 0:
        profile_type = enrichment_type
        sources.append(DetectionSource.IP_ENRICHMENT)

    return DetectedProfile(
        profile_type=profile_type,
        confidence=calculate_confidence(ua_score, referer_score, enrichment_score),
        detection_sources=sources,
        device_info=device_info,
        enrichment_data=enrichment or {},
    )


class ProfileDetectorService:
    """Runs classification for a request and manages the access bypass flag."""

    def __init__(
        self,
        enrichment_client: EnrichmentClient | None = None,
        ua_parser: UserAgentParserProtocol | None = None,
        redis_client: FastRedisClient | None = None,
    ):
        self.enrichment_client = enrichment_client or build_enrichment_client()
        self.ua_parser = ua_parser or UserAgentParser()
        self.redis = redis_client or fast_redis

    async def detect(self, ip: str | None, user_agent: str, referer: str | None) -> DetectedProfile:
        """
        Classify a visitor. Never raises: enrichment and hashing problems
        degrade to the signals that are still available.
        """
        device_info, is_bot = self.ua_parser.parse(user_agent)

        enrichment = None
        if ip and not (is_bot and is_recruiter_bot(user_agent)):
            enrichment = await self._lookup_enrichment(ip)

        profile = classify_profile(user_agent, device_info, referer, enrichment)

        logger.info(
            "Visitor profile detected",
            profile_type=profile.profile_type.value,
            confidence=profile.confidence,
            sources=[source.value for source in profile.detection_sources],
            device_type=device_info.device_type,
        )
        return profile

    async def _lookup_enrichment(self, ip: str) -> dict[str, Any] | None:
        try:
            hashed_ip = hash_ip(ip)
        except HashingError as e:
            logger.warning("Cannot hash client IP, skipping enrichment", error=str(e))
            return None

        try:
            return await self.enrichment_client.enrich(hashed_ip, ip)
        except EnrichmentError as e:
            logger.warning(
                "Enrichment lookup failed, continuing without it",
                error=str(e),
                status_code=e.status_code,
                ip_hash=hashed_ip[:12],
            )
            return None

    def should_bypass(self, profile: DetectedProfile) -> bool:
        if not settings.ACCESS_BYPASS_ON_PROFILE:
            return False
        return (
            profile.confidence >= settings.ACCESS_BYPASS_CONFIDENCE
            and profile.profile_type in BYPASS_ELIGIBLE_PROFILES
        )

    async def store_bypass(self, session_id: str) -> None:
        """Persist the bypass flag; it outlives later, weaker classifications."""
        await self.redis.set_with_ttl(
            f"{BYPASS_KEY_PREFIX}{session_id}", "1", settings.bypass_ttl_seconds()
        )
        logger.info("Access bypass granted", session_id=session_id[:8])

    async def has_bypass(self, session_id: str) -> bool:
        if not session_id:
            return False
        value = await self.redis.get(f"{BYPASS_KEY_PREFIX}{session_id}")
        return value == "1"
