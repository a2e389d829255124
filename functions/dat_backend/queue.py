"""
Queue abstraction for slug write-back jobs.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


@dataclass
class SlugWriteJob:
    """Persist `old -> next` after a redirect. Delivered at least once."""

    old: str
    next: str
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SlugWriteJob":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        return cls(
            old=str(data.get("old", "")),
            next=str(data.get("next", "")),
            attempts=int(data.get("attempts", 0)),
        )


class WriteQueue(Protocol):
    """Minimal queue interface for dispatching write jobs to workers."""

    def enqueue(self, job: SlugWriteJob) -> None:
        ...

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[SlugWriteJob]:
        ...


@dataclass
class InMemoryWriteQueue:
    """Simple FIFO queue for testing/dev."""

    items: deque = field(default_factory=deque)

    def __post_init__(self):
        self._lock = threading.Lock()

    def enqueue(self, job: SlugWriteJob) -> None:
        with self._lock:
            self.items.append(job)

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[SlugWriteJob]:
        with self._lock:
            if not self.items:
                return None
            return self.items.popleft()

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class RedisWriteQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "dat:slug-writes"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, job: SlugWriteJob) -> None:
        self.client.rpush(self.queue_key, job.to_json())

    def dequeue(
        self, *, block: bool = True, timeout: int | None = None
    ) -> Optional[SlugWriteJob]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, raw = result
            else:
                raw = self.client.lpop(self.queue_key)
                if raw is None:
                    return None
            return SlugWriteJob.from_json(raw)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and let the
            # worker loop retry.
            self.client = redis.Redis.from_url(self.url)
            return None
