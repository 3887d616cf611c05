import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.middleware.rate_limiter import rate_limiter
from app.services.ai_rate_limiter import ai_rate_limiter
from app.services.letter_queue import letter_queue


@pytest.fixture
def client(patch_stores, monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.ADMIN_API_KEY", "admin-secret")
    return TestClient(app, headers={"X-Admin-Key": "admin-secret"})


def test_admin_disabled_without_key(patch_stores, monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.ADMIN_API_KEY", None)

    response = TestClient(app).get("/api/v1/admin/rate-limit/global/10.0.0.1")

    assert response.status_code == 404


def test_wrong_admin_key_is_rejected(client):
    response = client.get("/api/v1/admin/rate-limit/global/10.0.0.1", headers={"X-Admin-Key": "nope"})

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "INVALID_ADMIN_KEY"


@pytest.mark.asyncio
async def test_reset_lifts_ban_and_daily_usage(client):
    for _ in range(rate_limiter.get_tier("ai").limit + 10):
        await rate_limiter.check("session-1", "ai")
    await ai_rate_limiter.commit("session-1")
    assert (await rate_limiter.check("session-1", "ai")).banned is True

    response = client.post(
        "/api/v1/admin/rate-limit/reset",
        json={"identifier": "session-1", "tier": "ai", "include_daily": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["tiers"] == ["ai"]
    assert body["keys_deleted"] == 5
    assert (await rate_limiter.check("session-1", "ai")).allowed is True
    assert (await ai_rate_limiter.check("session-1")).allowed is True


def test_reset_unknown_tier(client):
    response = client.post("/api/v1/admin/rate-limit/reset", json={"identifier": "x", "tier": "nope"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "UNKNOWN_TIER"


@pytest.mark.asyncio
async def test_rate_limit_info(client):
    for _ in range(3):
        await rate_limiter.check("10.0.0.9", "api")

    response = client.get("/api/v1/admin/rate-limit/api/10.0.0.9")

    assert response.status_code == 200
    info = response.json()
    assert info["used"] == 3
    assert info["banned"] is False


@pytest.mark.asyncio
async def test_retry_failed_job(client):
    job_id = await letter_queue.enqueue("session-1", "Acme")
    await letter_queue.fail(job_id, "boom")

    response = client.post(f"/api/v1/admin/jobs/{job_id}/retry")

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["retry_count"] == 1


@pytest.mark.asyncio
async def test_retry_rejects_active_job(client):
    job_id = await letter_queue.enqueue("session-1", "Acme")

    response = client.post(f"/api/v1/admin/jobs/{job_id}/retry")

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "JOB_NOT_RETRYABLE"


@pytest.mark.asyncio
async def test_retry_rejects_exhausted_job(client, monkeypatch):
    monkeypatch.setattr(letter_queue, "max_retries", 0)
    job_id = await letter_queue.enqueue("session-1", "Acme")
    await letter_queue.fail(job_id, "boom")

    response = client.post(f"/api/v1/admin/jobs/{job_id}/retry")

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "MAX_RETRIES_EXCEEDED"


def test_retry_unknown_job(client):
    response = client.post("/api/v1/admin/jobs/missing/retry")

    assert response.status_code == 404
