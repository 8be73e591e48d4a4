"""FastAPI application wiring for the throttle service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError

from .api.middleware import RateLimitMiddleware
from .api.routes import router as v1_router
from .config import Settings, get_settings
from .logging_config import setup_logging
from .security.rate_limiter import RateLimiter, SlidingWindowRateLimiter
from .security.redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def build_rate_limiter(settings: Settings, key_prefix: str | None = None) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    local = SlidingWindowRateLimiter(settings.limiter_config())
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            remote = RedisSlidingWindowRateLimiter(
                client,
                window_ms=settings.rate_limit_window_ms,
                key_prefix=key_prefix or settings.rate_limit_key_prefix,
            )
            return RateLimiter(local, remote)
        except (RedisError, ValueError) as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return RateLimiter(local)


def create_app(
    settings: Settings | None = None,
    limiter: RateLimiter | None = None,
    http_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the application.

    ``limiter`` answers /v1/limits/check and ``http_limiter`` throttles
    incoming requests per client. They never share state; either overrides
    the configured backend.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Attach the process-wide limiters for the app lifecycle."""
        app.state.rate_limiter = limiter or build_rate_limiter(settings)
        app.state.http_rate_limiter = http_limiter or build_rate_limiter(
            settings, key_prefix=f"{settings.rate_limit_key_prefix}-http"
        )
        try:
            yield
        finally:
            app.state.rate_limiter.close()
            app.state.http_rate_limiter.close()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(
        RateLimitMiddleware,
        limit=settings.rate_limit_requests,
        exempt_paths=settings.rate_limit_exempt_paths,
        trust_forwarded=settings.rate_limit_trust_forwarded,
    )

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(v1_router)
    return app


def main() -> None:
    """Run the service under uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.http_host,
        port=settings.http_port,
        log_config=None,
    )
