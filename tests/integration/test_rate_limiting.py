from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.middleware.rate_limit_dependencies import rate_limit_ai_attempts, rate_limit_global, require_session
from app.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.models.domain.rate_limit_domain import RateLimitCode, RateLimitResult


def test_rate_limit_headers_middleware():
    app = FastAPI()
    app.add_middleware(RateLimitHeadersMiddleware)

    @app.get("/limited")
    async def limited(request: Request):
        request.state.rate_limit_info = {
            "allowed": True,
            "limit": 10,
            "remaining": 9,
            "reset_at": 1760000060,
            "retry_after": None,
        }
        return {"ok": True}

    client = TestClient(app)
    response = client.get("/limited")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert response.headers["X-RateLimit-Reset"] == "1760000060"
    assert "Retry-After" not in response.headers


def test_rate_limit_dependency_blocks(monkeypatch):
    app = FastAPI()
    app.add_middleware(RateLimitHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)

    async def fake_check(identifier: str, tier_name: str):
        return RateLimitResult(
            allowed=False,
            limit=5,
            remaining=0,
            reset_at=1760000007,
            retry_after=7,
            code=RateLimitCode.RATE_LIMIT_EXCEEDED,
        )

    monkeypatch.setattr("app.middleware.rate_limit_dependencies.rate_limiter.check", fake_check)
    monkeypatch.setattr("app.middleware.rate_limit_dependencies.settings.RATE_LIMIT_ENABLED", True)

    @app.get("/limited")
    async def limited(_rate: None = Depends(rate_limit_global)):
        return {"ok": True}

    client = TestClient(app)
    response = client.get("/limited")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "7"
    assert response.headers["X-RateLimit-Limit"] == "5"
    assert response.json()["detail"]["error"] == "RATE_LIMIT_EXCEEDED"


def test_banned_identifier_gets_403(monkeypatch):
    app = FastAPI()

    async def fake_check(identifier: str, tier_name: str):
        return RateLimitResult(
            allowed=False,
            limit=20,
            remaining=0,
            reset_at=1760086400,
            retry_after=86400,
            code=RateLimitCode.TEMPORARILY_BANNED,
            banned=True,
        )

    monkeypatch.setattr("app.middleware.rate_limit_dependencies.rate_limiter.check", fake_check)
    monkeypatch.setattr("app.middleware.rate_limit_dependencies.settings.RATE_LIMIT_ENABLED", True)

    @app.get("/generate")
    async def generate(_rate: None = Depends(rate_limit_ai_attempts)):
        return {"ok": True}

    client = TestClient(app)
    client.cookies.set("letter_session", "session-abcdef12")
    response = client.get("/generate")

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "TEMPORARILY_BANNED"
    assert response.headers["Retry-After"] == "86400"


def test_disabled_rate_limiting_skips_checks(monkeypatch):
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    async def exploding_check(identifier: str, tier_name: str):
        raise AssertionError("limiter should not be called")

    monkeypatch.setattr("app.middleware.rate_limit_dependencies.rate_limiter.check", exploding_check)
    monkeypatch.setattr("app.middleware.rate_limit_dependencies.settings.RATE_LIMIT_ENABLED", False)

    @app.get("/open")
    async def open_endpoint(_rate: None = Depends(rate_limit_global)):
        return {"ok": True}

    assert TestClient(app).get("/open").status_code == 200


def test_missing_session_is_401():
    app = FastAPI()

    @app.get("/needs-session")
    async def needs_session(session_id: str = Depends(require_session)):
        return {"session_id": session_id}

    response = TestClient(app).get("/needs-session")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "SESSION_REQUIRED"
