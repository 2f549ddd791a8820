import os
import unittest
from unittest.mock import Mock, patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import redis

from app.services import rate_limit
from app.services.rate_limit import (
    ClientState,
    InMemoryRateLimiter,
    LazyRedisClient,
    RedisRateLimiter,
    get_rate_limiter,
    reset_rate_limiter_for_tests,
)


class InMemoryRateLimiterTests(unittest.TestCase):
    def test_blocks_after_limit_within_window(self):
        limiter = InMemoryRateLimiter()
        first = limiter.hit("otp:resend:subject:a", limit=1, window_seconds=60)
        second = limiter.hit("otp:resend:subject:a", limit=1, window_seconds=60)
        other = limiter.hit("otp:resend:subject:b", limit=1, window_seconds=60)

        self.assertTrue(first.allowed)
        self.assertFalse(second.allowed)
        self.assertGreater(second.retry_after_seconds, 0)
        self.assertEqual(second.current_value, 2)
        self.assertTrue(other.allowed)


class RedisRateLimiterTests(unittest.TestCase):
    def test_sets_expiry_on_first_hit(self):
        client = Mock()
        client.incr.return_value = 1
        client.ttl.return_value = 60
        result = RedisRateLimiter(client).hit("k", limit=1, window_seconds=60)
        client.expire.assert_called_once_with("k", 60)
        self.assertTrue(result.allowed)

        client.incr.return_value = 2
        client.ttl.return_value = 42
        result = RedisRateLimiter(client).hit("k", limit=1, window_seconds=60)
        self.assertFalse(result.allowed)
        self.assertEqual(result.retry_after_seconds, 42)


class LazyRedisClientTests(unittest.TestCase):
    def test_ready_after_successful_ping(self):
        client = Mock()
        factory = Mock(return_value=client)
        holder = LazyRedisClient(factory)

        self.assertIs(holder.state, ClientState.UNINITIALIZED)
        self.assertIs(holder.get(), client)
        self.assertIs(holder.get(), client)
        self.assertIs(holder.state, ClientState.READY)
        factory.assert_called_once()

    def test_failure_is_sticky_until_reset(self):
        client = Mock()
        client.ping.side_effect = redis.ConnectionError("refused")
        factory = Mock(return_value=client)
        holder = LazyRedisClient(factory)

        self.assertIsNone(holder.get())
        self.assertIsNone(holder.get())
        self.assertIs(holder.state, ClientState.UNAVAILABLE)
        factory.assert_called_once()

        client.ping.side_effect = None
        holder.reset()
        self.assertIs(holder.get(), client)
        self.assertIs(holder.state, ClientState.READY)
        self.assertEqual(factory.call_count, 2)


class GetRateLimiterTests(unittest.TestCase):
    def tearDown(self):
        reset_rate_limiter_for_tests()

    def test_falls_back_to_memory_when_redis_is_down(self):
        holder = LazyRedisClient(Mock(side_effect=redis.ConnectionError("refused")))
        with patch.object(rate_limit, "_redis_client", holder):
            reset_rate_limiter_for_tests()
            limiter = get_rate_limiter()
            self.assertIsInstance(limiter, InMemoryRateLimiter)
            self.assertIs(get_rate_limiter(), limiter)

    def test_uses_redis_when_available(self):
        holder = LazyRedisClient(Mock(return_value=Mock()))
        with patch.object(rate_limit, "_redis_client", holder):
            reset_rate_limiter_for_tests()
            self.assertIsInstance(get_rate_limiter(), RedisRateLimiter)
