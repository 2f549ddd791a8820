from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Protocol

import redis

from app.core.config import settings

_LOG = logging.getLogger("app.rate_limit")


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int
    current_value: int


class RateLimiter(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        ...


class InMemoryRateLimiter:
    def __init__(self):
        self._data: dict[str, tuple[int, datetime]] = {}
        self._lock = Lock()

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = datetime.now(timezone.utc)
        with self._lock:
            count, expires_at = self._data.get(key, (0, now))
            if expires_at <= now:
                count = 0
                expires_at = now + timedelta(seconds=max(int(window_seconds), 1))
            count += 1
            self._data[key] = (count, expires_at)
            retry_after = max(0, int((expires_at - now).total_seconds()))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=retry_after, current_value=count)


class RedisRateLimiter:
    def __init__(self, client: redis.Redis):
        self.client = client

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        count = int(self.client.incr(key))
        if count == 1:
            self.client.expire(key, int(max(window_seconds, 1)))
        ttl = int(self.client.ttl(key))
        if ttl < 0:
            ttl = int(max(window_seconds, 1))
        return RateLimitResult(allowed=count <= limit, retry_after_seconds=ttl, current_value=count)


class ClientState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class LazyRedisClient:
    """Connects on first use, once.

    A failed connection leaves the holder UNAVAILABLE for the rest of the
    process; only ``reset()`` allows another attempt.
    """

    def __init__(self, factory: Callable[[], redis.Redis]):
        self._factory = factory
        self._lock = Lock()
        self.state = ClientState.UNINITIALIZED
        self._client: redis.Redis | None = None

    def get(self) -> redis.Redis | None:
        with self._lock:
            if self.state is ClientState.UNINITIALIZED:
                try:
                    client = self._factory()
                    client.ping()
                except (redis.RedisError, OSError):
                    _LOG.warning("Redis unavailable; rate limiting falls back to in-memory counters")
                    self.state = ClientState.UNAVAILABLE
                else:
                    self._client = client
                    self.state = ClientState.READY
            return self._client if self.state is ClientState.READY else None

    def reset(self) -> None:
        with self._lock:
            self.state = ClientState.UNINITIALIZED
            self._client = None


def _redis_from_settings() -> redis.Redis:
    return redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=0.4,
        socket_connect_timeout=0.4,
    )


_redis_client = LazyRedisClient(_redis_from_settings)
_cached_limiter: RateLimiter | None = None
_limiter_lock = Lock()


def get_rate_limiter() -> RateLimiter:
    global _cached_limiter
    with _limiter_lock:
        if _cached_limiter is None:
            client = _redis_client.get()
            _cached_limiter = RedisRateLimiter(client) if client is not None else InMemoryRateLimiter()
        return _cached_limiter


def reset_rate_limiter_for_tests() -> None:
    global _cached_limiter
    with _limiter_lock:
        _cached_limiter = None
    _redis_client.reset()
