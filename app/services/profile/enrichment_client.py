# app/services/profile/enrichment_client.py
"""
Company/person enrichment keyed by hashed client IP.

The detector only depends on the narrow EnrichmentClient protocol, so the
real provider, a cached wrapper or a test double are interchangeable.
Results are cached under the IP digest; the raw IP is used for the
provider call only and is never stored or logged.
"""

import json
from typing import Any, Protocol

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.redis_client import FastRedisClient, StoreUnavailableError, fast_redis

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "enrichment:ip:"


class EnrichmentError(Exception):
    """Raised when the enrichment provider fails (timeouts, quota, bad payloads)."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class EnrichmentClient(Protocol):
    async def enrich(self, hashed_ip: str, ip: str | None = None) -> dict[str, Any] | None:
        """Return free-form attributes (company_type, job_title, industry, ...) or None."""
        ...


class NullEnrichmentClient:
    """Used when no provider is configured: every lookup is "no data"."""

    async def enrich(self, hashed_ip: str, ip: str | None = None) -> dict[str, Any] | None:
        return None


class ClearbitEnrichmentClient:
    """Clearbit-style person lookup by IP with a Redis cache in front."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        redis_client: FastRedisClient | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url or settings.ENRICHMENT_BASE_URL
        self.redis = redis_client or fast_redis
        self.cache_ttl = settings.ENRICHMENT_CACHE_TTL_DAYS * 24 * 3600
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.ENRICHMENT_TIMEOUT_SECONDS)
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def enrich(self, hashed_ip: str, ip: str | None = None) -> dict[str, Any] | None:
        cached = await self._get_cached(hashed_ip)
        if cached is not None:
            return cached

        if not ip:
            return None

        try:
            response = await self._client.get(
                self.base_url,
                params={"ip": ip},
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise EnrichmentError(f"Enrichment request failed: {e}") from e

        if response.status_code == 404:
            # No data for this IP is a normal outcome
            return None

        if response.status_code == 429:
            raise EnrichmentError("Enrichment rate limit exceeded", status_code=429)

        if response.status_code != 200:
            raise EnrichmentError(
                f"Enrichment API error: status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise EnrichmentError("Failed to decode enrichment response") from e

        if not isinstance(payload, dict):
            raise EnrichmentError(f"Unexpected enrichment payload type: {type(payload).__name__}")

        data = self._flatten(payload)

        if data:
            await self._set_cached(hashed_ip, data)

        return data or None

    def _flatten(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Map the provider payload onto the attribute names the detector reads."""
        geo = payload.get("geo") or {}
        person = payload.get("person") or {}

        mapping = {
            "company_name": payload.get("name"),
            "company_domain": payload.get("domain"),
            "company_type": payload.get("type"),
            "industry": payload.get("industry"),
            "company_size": payload.get("employeesRange"),
            "city": geo.get("city"),
            "country": geo.get("country"),
            "job_role": person.get("role"),
            "job_title": person.get("title"),
        }
        return {key: value for key, value in mapping.items() if value}

    async def _get_cached(self, hashed_ip: str) -> dict[str, Any] | None:
        try:
            cached = await self.redis.get(f"{CACHE_KEY_PREFIX}{hashed_ip}")
        except StoreUnavailableError:
            return None
        if not cached:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning("Discarding corrupt enrichment cache entry", ip_hash=hashed_ip[:12])
            return None

    async def _set_cached(self, hashed_ip: str, data: dict[str, Any]) -> None:
        try:
            await self.redis.set_with_ttl(
                f"{CACHE_KEY_PREFIX}{hashed_ip}", json.dumps(data), self.cache_ttl
            )
        except StoreUnavailableError:
            # Cache write is best effort
            logger.warning("Failed to cache enrichment result", ip_hash=hashed_ip[:12])


def build_enrichment_client() -> EnrichmentClient:
    """Pick the provider from settings; enrichment is disabled without an API key."""
    if not settings.ENRICHMENT_API_KEY:
        logger.warning("ENRICHMENT_API_KEY not set, profile enrichment disabled")
        return NullEnrichmentClient()
    return ClearbitEnrichmentClient(api_key=settings.ENRICHMENT_API_KEY)
