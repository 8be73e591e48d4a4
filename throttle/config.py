from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import os


def _split_paths(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class LimiterConfig:
    """Construction-time parameters for the in-memory limiter.

    Limiters raise ``window_ms`` and ``store_capacity`` below 1 to 1.
    """

    window_ms: int = 10_000
    store_capacity: int = 500


@dataclass(frozen=True)
class Settings:
    """Runtime configuration values exposed to FastAPI components."""

    app_name: str = os.getenv("APP_NAME", "throttle")
    version: str = os.getenv("APP_VERSION", "0.1.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    http_host: str = os.getenv("HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("HTTP_PORT", "8000"))
    rate_limit_requests: int = int(os.getenv("RATE_LIMIT_REQUESTS", "10"))
    rate_limit_window_ms: int = int(os.getenv("RATE_LIMIT_WINDOW_MS", "10000"))
    rate_limit_store_capacity: int = int(os.getenv("RATE_LIMIT_STORE_CAPACITY", "500"))
    rate_limit_backend: str = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
    rate_limit_key_prefix: str = os.getenv("RATE_LIMIT_KEY_PREFIX", "ratelimit")
    rate_limit_exempt_paths: tuple[str, ...] = field(
        default_factory=lambda: _split_paths(os.getenv("RATE_LIMIT_EXEMPT_PATHS", "/healthz,/metrics,/v1/limits/check"))
    )
    rate_limit_trust_forwarded: bool = os.getenv("RATE_LIMIT_TRUST_FORWARDED", "false").lower() in {
        "1",
        "true",
        "yes",
    }
    redis_url: str = os.getenv("REDIS_URL", "")
    admin_token: str = os.getenv("ADMIN_TOKEN", "")

    def limiter_config(self) -> LimiterConfig:
        """Return the limiter parameters carried by these settings."""
        return LimiterConfig(
            window_ms=self.rate_limit_window_ms,
            store_capacity=self.rate_limit_store_capacity,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings instance for the running process."""
    return Settings()
