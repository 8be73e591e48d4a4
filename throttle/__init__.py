"""Per-key sliding window request throttling."""

from .config import LimiterConfig, Settings, get_settings
from .security.rate_limiter import (
    RateLimitBackend,
    RateLimitBackendError,
    RateLimiter,
    SlidingWindowRateLimiter,
)
from .security.recency_store import RecencyStore

__all__ = [
    "LimiterConfig",
    "RateLimitBackend",
    "RateLimitBackendError",
    "RateLimiter",
    "RecencyStore",
    "Settings",
    "SlidingWindowRateLimiter",
    "get_settings",
]
