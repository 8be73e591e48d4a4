"""Per-client request throttling for every HTTP route."""

from __future__ import annotations

import logging
from typing import Iterable

from prometheus_client import Counter
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from ..security.rate_limiter import RateLimitBackend

logger = logging.getLogger(__name__)

DECISIONS = Counter(
    "throttle_decisions_total",
    "Rate limit admission decisions",
    ["outcome"],
)


def record_decision(allowed: bool) -> None:
    DECISIONS.labels(outcome="allowed" if allowed else "denied").inc()


def client_key(request: Request, trust_forwarded: bool = False) -> str:
    """Identify the caller by socket peer, or by the first forwarded address behind a proxy."""
    if trust_forwarded:
        first = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if first:
            return first
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject callers that exceed ``limit`` requests within the limiter window."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        limit: int,
        exempt_paths: Iterable[str] = (),
        trust_forwarded: bool = False,
    ) -> None:
        super().__init__(app)
        self._limit = limit
        self._exempt_paths = frozenset(exempt_paths)
        self._trust_forwarded = trust_forwarded

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path not in self._exempt_paths:
            limiter: RateLimitBackend = request.app.state.http_rate_limiter
            key = client_key(request, self._trust_forwarded)
            allowed = await run_in_threadpool(limiter.check, self._limit, key)
            record_decision(allowed)
            if not allowed:
                logger.info("rate limited %s %s for %s", request.method, request.url.path, key)
                response: Response = JSONResponse({"detail": "rate limited"}, status_code=429)
                response.headers["X-XSS-Protection"] = "1; mode=block"
                return response
        response = await call_next(request)
        response.headers["X-XSS-Protection"] = "1; mode=block"
        return response
