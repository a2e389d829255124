import asyncio
import unittest

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dat_backend.forwards import SlugForwardMap
from dat_backend.middleware import (
    HttpForwardLookup,
    LocalForwardLookup,
    SlugRedirectMiddleware,
)
from dat_backend.queue import InMemoryWriteQueue
from dat_backend.resolver import CanonicalResolver


class FakeLookup:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def lookup(self, slug):
        self.calls.append(slug)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def _client(lookup, queue=None, timeout=0.2):
    app = FastAPI()

    @app.get("/alumni/{slug}")
    def profile(slug: str):
        return {"slug": slug}

    @app.get("/api/alumni/{slug}")
    def api_profile(slug: str):
        return {"api": slug}

    app.add_middleware(
        SlugRedirectMiddleware,
        lookup=lookup,
        write_queue=(lambda: queue) if queue is not None else None,
        timeout=timeout,
    )
    return TestClient(app)


class SlugRedirectMiddlewareTests(unittest.TestCase):
    def test_redirects_to_canonical_and_keeps_query(self):
        lookup = FakeLookup(result="new-name")
        queue = InMemoryWriteQueue()
        client = _client(lookup, queue)

        response = client.get("/alumni/Old-Name?ref=fb", follow_redirects=False)

        self.assertEqual(response.status_code, 308)
        self.assertEqual(response.headers["location"], "/alumni/new-name?ref=fb")
        self.assertEqual(response.headers["x-slug-in"], "old-name")
        self.assertEqual(response.headers["x-slug-target"], "new-name")
        self.assertEqual(response.headers["x-slug-action"], "redirect")
        self.assertEqual(lookup.calls, ["old-name"])

        job = queue.dequeue(block=False)
        self.assertEqual((job.old, job.next), ("old-name", "new-name"))

    def test_no_forward_passes_through(self):
        client = _client(FakeLookup(result=None))

        response = client.get("/alumni/jane-doe")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"slug": "jane-doe"})
        self.assertEqual(response.headers["x-slug-action"], "pass")
        self.assertEqual(response.headers["x-slug-target"], "")

    def test_same_slug_passes_with_target_header(self):
        queue = InMemoryWriteQueue()
        response = _client(FakeLookup(result="Jane-Doe"), queue).get("/alumni/jane-doe")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["x-slug-target"], "jane-doe")
        self.assertEqual(response.headers["x-slug-action"], "pass")
        self.assertEqual(len(queue), 0)

    def test_lookup_timeout_passes_through(self):
        lookup = FakeLookup(result="new-name", delay=1.0)
        response = _client(lookup, timeout=0.05).get("/alumni/old-name")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["x-slug-action"], "pass")
        self.assertEqual(response.headers["x-slug-target"], "")

    def test_lookup_error_passes_through(self):
        lookup = FakeLookup(error=RuntimeError("upstream 500"))
        response = _client(lookup).get("/alumni/old-name")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["x-slug-in"], "old-name")
        self.assertEqual(response.headers["x-slug-action"], "pass")

    def test_queue_failure_does_not_block_redirect(self):
        app_lookup = FakeLookup(result="new-name")

        def broken_queue():
            raise RuntimeError("redis down")

        app = FastAPI()
        app.add_middleware(
            SlugRedirectMiddleware, lookup=app_lookup, write_queue=broken_queue, timeout=0.2
        )
        with self.assertLogs("dat_backend.middleware", level="ERROR"):
            response = TestClient(app).get("/alumni/old-name", follow_redirects=False)
        self.assertEqual(response.status_code, 308)

    def test_non_alumni_paths_are_untouched(self):
        lookup = FakeLookup(result="new-name")
        client = _client(lookup)

        api = client.get("/api/alumni/old-name")
        other = client.get("/about")

        self.assertEqual(api.json(), {"api": "old-name"})
        self.assertNotIn("x-slug-in", api.headers)
        self.assertNotIn("x-slug-in", other.headers)
        self.assertEqual(lookup.calls, [])

    def test_encoded_slug_is_decoded_before_lookup(self):
        lookup = FakeLookup(result=None)
        _client(lookup).get("/alumni/Jos%C3%A9")
        self.assertEqual(lookup.calls, ["josé"])

    def test_percent_in_slug_is_decoded_once(self):
        lookup = FakeLookup(result=None)
        _client(lookup).get("/alumni/100%2541")
        self.assertEqual(lookup.calls, ["100%41"])

    def test_forward_cycle_does_not_loop(self):
        forwards = SlugForwardMap(source=lambda: "fromSlug,toSlug\na,b\nb,a\n")
        resolver = CanonicalResolver(forwards)
        client = _client(LocalForwardLookup(lambda: resolver))

        settled = client.get("/alumni/a", follow_redirects=False)
        moved = client.get("/alumni/b", follow_redirects=False)

        self.assertEqual(settled.status_code, 200)
        self.assertEqual(settled.headers["x-slug-action"], "pass")
        self.assertEqual(moved.status_code, 308)
        self.assertEqual(moved.headers["location"], "/alumni/a")


class HttpForwardLookupTests(unittest.TestCase):
    def _lookup(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpForwardLookup("https://dat.example.org/", client=client)

    def test_reads_target_from_forward_endpoint(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"input": "old-name", "target": "New-Name"})

        target = asyncio.run(self._lookup(handler).lookup("old-name"))

        self.assertEqual(target, "new-name")
        request = seen[0]
        self.assertEqual(request.url.path, "/api/admin/forward-slug")
        self.assertEqual(request.url.params["slug"], "old-name")
        self.assertIn("_cb", request.url.params)
        self.assertIn("no-store", request.headers["cache-control"])

    def test_null_target(self):
        handler = lambda request: httpx.Response(200, json={"input": "x", "target": None})
        self.assertIsNone(asyncio.run(self._lookup(handler).lookup("x")))

    def test_server_error_raises(self):
        handler = lambda request: httpx.Response(500, json={"ok": False})
        with self.assertRaises(httpx.HTTPStatusError):
            asyncio.run(self._lookup(handler).lookup("x"))


if __name__ == "__main__":
    unittest.main()
