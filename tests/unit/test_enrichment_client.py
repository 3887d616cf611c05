import json

import httpx
import pytest

from app.models.domain.profile_domain import DetectionSource, ProfileType
from app.services.profile import enrichment_client as enrichment_module
from app.services.profile.enrichment_client import (
    ClearbitEnrichmentClient,
    EnrichmentError,
    NullEnrichmentClient,
    build_enrichment_client,
)
from app.services.profile.profile_detector import ProfileDetectorService

PROVIDER_PAYLOAD = {
    "name": "Acme Talent",
    "domain": "acmetalent.example",
    "type": "private",
    "industry": "Staffing & Recruiting",
    "employeesRange": "51-250",
    "geo": {"city": "Lyon", "country": "FR"},
    "person": {"role": "human_resources", "title": "Talent Acquisition Lead"},
}


def _client(handler, fake_redis) -> ClearbitEnrichmentClient:
    transport = httpx.MockTransport(handler)
    return ClearbitEnrichmentClient(
        api_key="test-key",
        base_url="https://enrichment.test/v1/find",
        redis_client=fake_redis,
        http_client=httpx.AsyncClient(transport=transport),
    )


@pytest.mark.asyncio
async def test_flattens_provider_payload_and_caches_by_hash(fake_redis):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PROVIDER_PAYLOAD)

    client = _client(handler, fake_redis)
    data = await client.enrich("hash-123", "198.51.100.4")

    assert data["industry"] == "Staffing & Recruiting"
    assert data["job_title"] == "Talent Acquisition Lead"
    assert data["city"] == "Lyon"
    assert seen[0].url.params["ip"] == "198.51.100.4"
    assert seen[0].headers["Authorization"] == "Bearer test-key"

    cached = json.loads(fake_redis.store["enrichment:ip:hash-123"])
    assert cached == data
    assert "198.51.100.4" not in fake_redis.store["enrichment:ip:hash-123"]


@pytest.mark.asyncio
async def test_cache_hit_skips_provider(fake_redis):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=PROVIDER_PAYLOAD)

    await fake_redis.set_with_ttl("enrichment:ip:hash-123", json.dumps({"job_title": "CTO"}), 60)
    client = _client(handler, fake_redis)

    assert await client.enrich("hash-123", "198.51.100.4") == {"job_title": "CTO"}
    assert calls == []


@pytest.mark.asyncio
async def test_not_found_means_no_data(fake_redis):
    client = _client(lambda request: httpx.Response(404), fake_redis)

    assert await client.enrich("hash-404", "198.51.100.4") is None
    assert "enrichment:ip:hash-404" not in fake_redis.store


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_provider_errors_raise(fake_redis, status_code):
    client = _client(lambda request: httpx.Response(status_code), fake_redis)

    with pytest.raises(EnrichmentError) as exc_info:
        await client.enrich("hash-err", "198.51.100.4")

    assert exc_info.value.status_code == status_code


@pytest.mark.asyncio
async def test_non_object_payload_raises(fake_redis):
    client = _client(lambda request: httpx.Response(200, json=[{"name": "Acme"}]), fake_redis)

    with pytest.raises(EnrichmentError):
        await client.enrich("hash-list", "198.51.100.4")

    assert "enrichment:ip:hash-list" not in fake_redis.store


@pytest.mark.asyncio
async def test_detector_ignores_non_object_payload(fake_redis, monkeypatch):
    monkeypatch.setattr("app.security.hashing.settings.HASHING_SECRET", "t" * 32)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[{"name": "Acme"}])

    client = _client(handler, fake_redis)
    detector = ProfileDetectorService(enrichment_client=client, redis_client=fake_redis)

    profile = await detector.detect("198.51.100.4", "Mozilla/5.0 (X11; Linux x86_64) Firefox/125.0", None)

    assert len(calls) == 1
    assert profile.profile_type == ProfileType.OTHER
    assert DetectionSource.IP_ENRICHMENT not in profile.detection_sources


@pytest.mark.asyncio
async def test_transport_error_raises_enrichment_error(fake_redis):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = _client(handler, fake_redis)

    with pytest.raises(EnrichmentError):
        await client.enrich("hash-timeout", "198.51.100.4")


@pytest.mark.asyncio
async def test_store_outage_does_not_block_lookup(fake_redis):
    fake_redis.fail = True
    client = _client(lambda request: httpx.Response(200, json=PROVIDER_PAYLOAD), fake_redis)

    data = await client.enrich("hash-123", "198.51.100.4")

    assert data["company_name"] == "Acme Talent"


@pytest.mark.asyncio
async def test_null_client_returns_nothing():
    assert await NullEnrichmentClient().enrich("hash", "198.51.100.4") is None


def test_builder_without_key_disables_enrichment(monkeypatch):
    monkeypatch.setattr(enrichment_module.settings, "ENRICHMENT_API_KEY", None)

    assert isinstance(build_enrichment_client(), NullEnrichmentClient)
