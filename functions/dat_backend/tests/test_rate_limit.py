import unittest
from unittest.mock import MagicMock, patch

import redis
from starlette.requests import Request

from dat_backend.rate_limit import InMemoryRateLimiter, RedisRateLimiter, client_ip, rate_key


def _request(headers=(), client=("9.9.9.9", 5000), path="/api/admin/diag-aliases"):
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": b"",
            "server": ("testserver", 80),
            "headers": [(k.encode(), v.encode()) for k, v in headers],
            "client": client,
        }
    )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class InMemoryRateLimiterTests(unittest.TestCase):
    def test_window_budget_then_reset(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(limit=2, window_seconds=60, clock=clock)

        self.assertTrue(limiter.hit("k"))
        self.assertTrue(limiter.hit("k"))
        self.assertFalse(limiter.hit("k"))
        self.assertTrue(limiter.hit("other"))

        clock.now += 61
        self.assertTrue(limiter.hit("k"))

    def test_expired_buckets_are_pruned(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(limit=5, window_seconds=60, clock=clock, prune_threshold=3)
        for key in ("a", "b", "c"):
            limiter.hit(key)

        clock.now += 61
        limiter.hit("d")

        self.assertEqual(list(limiter.buckets), ["d"])


class RedisRateLimiterTests(unittest.TestCase):
    @patch("dat_backend.rate_limit.redis.Redis.from_url")
    def test_counts_and_sets_ttl_on_first_hit(self, mock_from_url):
        client = MagicMock()
        mock_from_url.return_value = client
        limiter = RedisRateLimiter(url="redis://localhost:6379/0", limit=2, window_seconds=60)

        client.incr.return_value = 1
        self.assertTrue(limiter.hit("k"))
        client.expire.assert_called_once_with("dat:rl:k", 60)

        client.incr.return_value = 3
        self.assertFalse(limiter.hit("k"))
        self.assertEqual(client.expire.call_count, 1)

    @patch("dat_backend.rate_limit.redis.Redis.from_url")
    def test_redis_errors_allow_the_request(self, mock_from_url):
        client = MagicMock()
        client.incr.side_effect = redis.exceptions.ConnectionError("gone")
        mock_from_url.return_value = client

        limiter = RedisRateLimiter(url="redis://localhost:6379/0", limit=1)
        self.assertTrue(limiter.hit("k"))


class ClientIpTests(unittest.TestCase):
    def test_forwarded_for_wins(self):
        request = _request(headers=[("x-forwarded-for", "1.2.3.4, 5.6.7.8")])
        self.assertEqual(client_ip(request), "1.2.3.4")

    def test_real_ip_then_peer(self):
        self.assertEqual(client_ip(_request(headers=[("x-real-ip", "4.4.4.4")])), "4.4.4.4")
        self.assertEqual(client_ip(_request()), "9.9.9.9")
        self.assertEqual(client_ip(_request(client=None)), "local")

    def test_rate_key(self):
        self.assertEqual(rate_key(_request()), "9.9.9.9:GET:/api/admin/diag-aliases")


if __name__ == "__main__":
    unittest.main()
