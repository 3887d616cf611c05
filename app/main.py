# app/main.py
"""
Letter generation control plane: app wiring and Redis lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RateLimitHeadersMiddleware, RequestContextMiddleware, VisitorTrackingMiddleware
from app.routes import admin, health, letters
from app.services.infrastructure.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        logger.info("All services initialized successfully", services=["redis"])
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    yield

    logger.info("Application shutting down")
    try:
        await fast_redis.close()
        logger.info("All services closed successfully")
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))


app = FastAPI(
    title="Letter Generation Control Plane",
    description="Visitor-gated, rate-limited motivation letter generation",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(letters.router)
app.include_router(admin.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    session_id = getattr(request.state, "session_id", None)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        session_id=session_id[:8] if session_id else None,
    )
    return response


# Last added runs first: request context -> logging -> visitor tracking -> headers
app.add_middleware(RateLimitHeadersMiddleware)
app.add_middleware(VisitorTrackingMiddleware)
app.add_middleware(RequestContextMiddleware)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
