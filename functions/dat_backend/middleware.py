"""
Edge redirect for `/alumni/<slug>` requests.

Every request whose path starts with `/alumni/` asks a `ForwardLookup` which
slug is canonical. A different slug yields a 308 to the canonical path (query
string kept) and queues a write-back job; anything else, including lookup
failures and timeouts, passes through to the page with diagnostic headers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol
from urllib.parse import quote

import httpx
from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from dat_backend.queue import SlugWriteJob, WriteQueue
from dat_backend.resolver import CanonicalResolver
from dat_backend.slugs import match_alumni_path, normalize_key

logger = logging.getLogger(__name__)

FORWARD_ENDPOINT = "/api/admin/forward-slug"
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, max-age=0",
    "Pragma": "no-cache",
}


class ForwardLookup(Protocol):
    async def lookup(self, slug: str) -> Optional[str]:
        """Canonical target for `slug`, or None when it should not move."""
        ...


class HttpForwardLookup:
    """Asks a deployed instance's forward-slug endpoint."""

    def __init__(self, origin: str, *, client: Optional[httpx.AsyncClient] = None):
        self.origin = origin.rstrip("/")
        self._client = client

    async def lookup(self, slug: str) -> Optional[str]:
        params = {"slug": slug, "_cb": str(int(time.time() * 1000))}
        url = f"{self.origin}{FORWARD_ENDPOINT}"
        if self._client is not None:
            response = await self._client.get(url, params=params, headers=NO_CACHE_HEADERS)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, params=params, headers=NO_CACHE_HEADERS)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            return None
        target = normalize_key((data or {}).get("target"))
        return target or None


class LocalForwardLookup:
    """Resolves in-process, off the event loop."""

    def __init__(self, resolver: Callable[[], CanonicalResolver]):
        self._resolver = resolver

    async def lookup(self, slug: str) -> Optional[str]:
        return await run_in_threadpool(self._resolver().forward_target, slug)


def _slug_headers(response: Response, incoming: str, target: str, action: str) -> Response:
    response.headers["x-slug-in"] = incoming
    response.headers["x-slug-target"] = target
    response.headers["x-slug-action"] = action
    return response


class SlugRedirectMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        *,
        lookup: ForwardLookup,
        write_queue: Optional[Callable[[], WriteQueue]] = None,
        timeout: float = 3.0,
    ):
        super().__init__(app)
        self.lookup = lookup
        self.write_queue = write_queue
        self.timeout = timeout

    def _enqueue(self, old: str, new: str) -> None:
        if self.write_queue is None:
            return
        try:
            self.write_queue().enqueue(SlugWriteJob(old=old, next=new))
        except Exception:
            logger.exception("Failed to queue slug write %s -> %s", old, new)

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        raw = match_alumni_path(request.url.path)
        if raw is None:
            return await call_next(request)

        # The ASGI path is already percent-decoded.
        incoming = normalize_key(raw)
        if not incoming:
            return await call_next(request)

        try:
            target = await asyncio.wait_for(self.lookup.lookup(incoming), self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Forward lookup for %s timed out after %.1fs", incoming, self.timeout)
            target = None
        except Exception as exc:
            logger.warning("Forward lookup for %s failed: %s", incoming, exc)
            target = None
        else:
            target = normalize_key(target)

        if target and target != incoming:
            location = f"/alumni/{quote(target, safe='')}"
            if request.url.query:
                location = f"{location}?{request.url.query}"
            response = RedirectResponse(
                location,
                status_code=308,
                background=BackgroundTask(self._enqueue, incoming, target),
            )
            logger.debug("Redirecting /alumni/%s -> %s", incoming, location)
            return _slug_headers(response, incoming, target, "redirect")

        response = await call_next(request)
        return _slug_headers(response, incoming, target or "", "pass")
