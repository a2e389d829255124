"""
Fixed-window rate limiting for the admin endpoints.

The in-memory limiter is fine for a single instance; point REDIS_URL at a
shared Redis to share counters across instances.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

import redis
from fastapi import Request


class RateLimiter(Protocol):
    def hit(self, key: str) -> bool:
        """Count one request for `key`; False once the window budget is spent."""
        ...


@dataclass
class _Bucket:
    count: int
    reset_at: float


@dataclass
class InMemoryRateLimiter:
    limit: int = 60
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    buckets: dict[str, _Bucket] = field(default_factory=dict)
    prune_threshold: int = 1024

    def __post_init__(self):
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            if len(self.buckets) >= self.prune_threshold:
                self._prune(now)
            bucket = self.buckets.get(key)
            if bucket is None or bucket.reset_at <= now:
                self.buckets[key] = _Bucket(count=1, reset_at=now + self.window_seconds)
                return True
            if bucket.count >= self.limit:
                return False
            bucket.count += 1
            return True

    def _prune(self, now: float) -> None:
        expired = [k for k, b in self.buckets.items() if b.reset_at <= now]
        for k in expired:
            del self.buckets[k]

    def clear(self) -> None:
        with self._lock:
            self.buckets.clear()


@dataclass
class RedisRateLimiter:
    """Counter per key with a TTL equal to the window."""

    url: str
    limit: int = 60
    window_seconds: int = 60
    prefix: str = "dat:rl"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def hit(self, key: str) -> bool:
        redis_key = f"{self.prefix}:{key}"
        try:
            count = self.client.incr(redis_key)
            if int(count) == 1:
                self.client.expire(redis_key, self.window_seconds)
        except redis.exceptions.RedisError:
            # Counting is best effort; never lock admins out because Redis blipped.
            return True
        return int(count) <= self.limit


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "local"


def rate_key(request: Request) -> str:
    return f"{client_ip(request)}:{request.method}:{request.url.path}"
