"""Redis-backed sliding window rate limiter."""

from __future__ import annotations

from typing import Final

from redis import Redis
from redis.exceptions import RedisError, ResponseError

from .rate_limiter import Clock, RateLimitBackendError, wall_clock_ms


class RedisSlidingWindowRateLimiter:
    """Distributed sliding window limiter implemented with Redis sorted sets."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local counter_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    local current = redis.call('ZCARD', key)
    if current >= limit then
        return 0
    end
    local seq = redis.call('INCR', counter_key)
    redis.call('PEXPIRE', counter_key, window_ms)
    local member = tostring(now_ms) .. ':' .. tostring(seq)
    redis.call('ZADD', key, now_ms, member)
    redis.call('PEXPIRE', key, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        window_ms: int,
        key_prefix: str = "ratelimit",
        clock: Clock | None = None,
    ) -> None:
        """Initialise the Redis client, window configuration, and Lua script cache."""
        self._client = client
        self._window_ms = max(1, int(window_ms))
        self._key_prefix = key_prefix
        self._clock = clock or wall_clock_ms
        self._script = client.register_script(self._LUA_SCRIPT)

    def check(self, limit: int, key: str) -> bool:
        """Return ``True`` when the key is still within the distributed rate limit.

        Raises
        ------
        RateLimitBackendError
            When Redis cannot be reached or rejects the commands.
        """
        if limit <= 0:
            return False
        now_ms = self._clock()
        redis_key = f"{self._key_prefix}:{key}"
        try:
            try:
                result = self._script(keys=[redis_key], args=[self._window_ms, limit, now_ms])
                return int(result) == 1
            except ResponseError as exc:
                message = str(exc).lower()
                if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                    return self._check_fallback(redis_key, limit, now_ms)
                raise
        except RedisError as exc:
            raise RateLimitBackendError(str(exc)) from exc

    def reset(self) -> None:
        """Delete every key stored under this limiter's prefix."""
        try:
            keys = list(self._client.scan_iter(match=f"{self._key_prefix}:*"))
            if keys:
                self._client.delete(*keys)
        except RedisError as exc:
            raise RateLimitBackendError(str(exc)) from exc

    def close(self) -> None:
        """Close the underlying Redis connection pool."""
        self._client.close()

    def _check_fallback(self, redis_key: str, limit: int, now_ms: int) -> bool:
        """Fallback pure-Python implementation used when Lua is unavailable."""
        window_start = now_ms - self._window_ms
        self._client.zremrangebyscore(redis_key, 0, window_start)
        current = self._client.zcard(redis_key)
        if current >= limit:
            return False
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        member = f"{now_ms}:{seq}"
        self._client.zadd(redis_key, {member: now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return True
