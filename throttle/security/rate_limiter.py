"""In-memory sliding window rate limiter and backend dispatch."""

from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Optional, Protocol

from ..config import LimiterConfig
from .recency_store import RecencyStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def wall_clock_ms() -> int:
    """Return the current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class RateLimitBackendError(RuntimeError):
    """Raised by a remote backend when it cannot produce a decision."""


class RateLimitBackend(Protocol):
    """Admission contract shared by the local and remote backends."""

    def check(self, limit: int, key: str) -> bool:
        ...

    def reset(self) -> None:
        ...


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter with bounded key cardinality.

    Each key maps to an ascending deque of admission timestamps. Keys are
    held in a :class:`RecencyStore`, so once ``store_capacity`` distinct keys
    are tracked the least recently touched key loses its history, even if it
    is still mid-window. New traffic is favoured over idle traffic.
    """

    def __init__(self, config: LimiterConfig | None = None, *, clock: Clock | None = None) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._config = config or LimiterConfig()
        self._window_ms = max(1, int(self._config.window_ms))
        self._clock = clock or wall_clock_ms
        self._events: RecencyStore[str, Deque[int]] = RecencyStore(self._config.store_capacity)
        self._lock = Lock()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def tracked_keys(self) -> int:
        """Number of keys currently holding history."""
        return len(self._events)

    def check(self, limit: int, key: str) -> bool:
        """Return ``True`` when ``key`` may perform one more action under ``limit``.

        Admitted requests are recorded. Denied requests are not, though the
        pruned history is still written back so expired entries are never
        scanned twice.
        """
        with self._lock:
            # read under the lock so stored timestamps stay ascending
            now = self._clock()
            window_start = now - self._window_ms
            queue = self._events.get(key)
            if queue is None:
                queue = deque()
            # timestamps equal to window_start have expired
            while queue and queue[0] <= window_start:
                queue.popleft()
            allowed = 0 < limit and len(queue) < limit
            if allowed:
                queue.append(now)
            self._events.set(key, queue)
            return allowed

    def reset(self) -> None:
        """Forget every key's history."""
        with self._lock:
            self._events.clear()


class RateLimiter:
    """Dispatch admission checks to the configured backend.

    When a remote backend is configured it is asked first. If it fails, the
    decision for that call comes from the local limiter instead (fail open),
    and the failure is logged.
    """

    def __init__(
        self,
        local: SlidingWindowRateLimiter,
        remote: Optional[RateLimitBackend] = None,
    ) -> None:
        self._local = local
        self._remote = remote

    @property
    def local(self) -> SlidingWindowRateLimiter:
        return self._local

    @property
    def remote(self) -> Optional[RateLimitBackend]:
        return self._remote

    def check(self, limit: int, key: str) -> bool:
        if self._remote is not None:
            try:
                return self._remote.check(limit, key)
            except RateLimitBackendError as exc:
                logger.warning("remote rate limit backend failed, falling back to in-memory: %s", exc)
        return self._local.check(limit, key)

    def reset(self) -> None:
        self._local.reset()
        if self._remote is not None:
            try:
                self._remote.reset()
            except RateLimitBackendError as exc:
                logger.warning("remote rate limit backend reset failed: %s", exc)

    def close(self) -> None:
        """Release connections held by the remote backend, if any."""
        close = getattr(self._remote, "close", None)
        if close is not None:
            close()
