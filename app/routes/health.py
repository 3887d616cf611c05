# app/routes/health.py
"""
Health check endpoints: liveness and readiness (Redis round trip).
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.services.infrastructure.redis_client import StoreUnavailableError, fast_redis
from app.services.letter_queue import letter_queue

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "letter-generation-control-plane"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check with Redis latency and queue depth.
    """
    checks = {}
    overall_ok = True

    # 1) Redis health check
    t0 = time.time()
    redis_ok = await fast_redis.ping()
    checks["redis"] = {
        "ok": redis_ok,
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    overall_ok = overall_ok and redis_ok

    # 2) Letter queue depth
    if redis_ok:
        try:
            checks["letter_queue"] = {"ok": True, "length": await letter_queue.queue_length()}
        except StoreUnavailableError as e:
            checks["letter_queue"] = {"ok": False, "error": str(e)}
            overall_ok = False

    # 3) Configuration checks
    config_issues = []

    if not settings.OPENAI_API_KEY:
        config_issues.append("OPENAI_API_KEY not set")

    if not settings.ENRICHMENT_API_KEY:
        config_issues.append("ENRICHMENT_API_KEY not set (profile enrichment disabled)")

    if settings.environment == "production" and settings.HASHING_SECRET.startswith("dev-only"):
        config_issues.append("HASHING_SECRET uses the development default")
        overall_ok = False

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
