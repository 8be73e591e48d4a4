"""HTTP route definitions for the throttle service."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from pydantic import BaseModel

from ..security.rate_limiter import RateLimitBackend
from .middleware import record_decision

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class CheckRequest(BaseModel):
    """Admission question asked on behalf of another service."""

    key: str
    limit: int


class CheckResponse(BaseModel):
    """Admission decision for a single key."""

    key: str
    limit: int
    allowed: bool


def get_rate_limiter(request: Request) -> RateLimitBackend:
    """Resolve the limiter stored on the FastAPI application state."""
    limiter: RateLimitBackend = request.app.state.rate_limiter
    return limiter


@router.post("/limits/check", response_model=CheckResponse)
def check_limit(
    payload: CheckRequest,
    limiter: RateLimitBackend = Depends(get_rate_limiter),
) -> CheckResponse:
    """Record one action for ``key`` and report whether it was admitted."""
    allowed = limiter.check(payload.limit, payload.key)
    record_decision(allowed)
    if not allowed:
        logger.info("rate limit denied key=%r limit=%d", payload.key, payload.limit)
    return CheckResponse(key=payload.key, limit=payload.limit, allowed=allowed)


@router.post("/limits/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_limits(
    request: Request,
    admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
    limiter: RateLimitBackend = Depends(get_rate_limiter),
) -> Response:
    """Clear all throttling state. Requires the configured admin token."""
    expected = request.app.state.settings.admin_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if admin_token is None or not hmac.compare_digest(admin_token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    limiter.reset()
    logger.warning("rate limit state reset by administrator")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
