"""
Shared fixtures for collector tests.

Source endpoints and the ingestion sink are real in-process aiohttp servers
so the HTTP clients are exercised end to end.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from collector.models import Endpoint
from collector.offset_store import OffsetStore


class FakeSource:
    """
    A log endpoint serving batch listings and batch bodies.

    Bodies are written in ``chunk_size`` pieces so records straddle chunk
    boundaries. Every batch request's query string is recorded.

    ``abort_after[id] = n`` drops the connection after ``n`` body bytes of
    batch ``id`` (once ``before_abort`` completes, when set). With ``follow``
    the response stays open after the body, as a live batch does, until the
    client goes away; ``open_streams`` counts such responses.
    """

    def __init__(self, chunk_size: int = 5):
        self.batches: dict[int, bytes] = {}
        self.reported_sizes: dict[int, int] = {}
        self.list_status = 200
        self.list_payload = None
        self.chunk_size = chunk_size
        self.batch_requests: list[dict[str, str]] = []
        self.abort_after: dict[int, int] = {}
        self.before_abort: Callable[[], Awaitable[None]] | None = None
        self.follow = False
        self.open_streams = 0
        self.server: TestServer | None = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/logs/svc", self.handle_list)
        app.router.add_get("/logs/svc/batch/{batch_id}", self.handle_batch)
        return app

    @property
    def target_url(self) -> str:
        return str(self.server.make_url("/logs/svc"))

    async def handle_list(self, request: web.Request) -> web.Response:
        if self.list_status != 200:
            return web.Response(status=self.list_status, text="unavailable")
        if self.list_payload is not None:
            return web.json_response(self.list_payload)
        return web.json_response(
            [
                {"id": batch_id, "batchSize": self.reported_sizes.get(batch_id, len(body))}
                for batch_id, body in self.batches.items()
            ]
        )

    async def handle_batch(self, request: web.Request) -> web.StreamResponse:
        batch_id = int(request.match_info["batch_id"])
        self.batch_requests.append(dict(request.query))
        if batch_id not in self.batches:
            return web.Response(status=404)

        start = int(request.query.get("start", 0))
        body = self.batches[batch_id][start:]
        abort_at = self.abort_after.get(batch_id)

        response = web.StreamResponse(status=200)
        if abort_at is not None:
            response.content_length = len(body)
            body = body[:abort_at]
        await response.prepare(request)

        self.open_streams += 1
        try:
            for i in range(0, len(body), self.chunk_size):
                await response.write(body[i : i + self.chunk_size])

            if abort_at is not None:
                if self.before_abort is not None:
                    await self.before_abort()
                request.transport.close()
                return response

            if self.follow:
                while request.transport is not None and not request.transport.is_closing():
                    await asyncio.sleep(0.01)
                return response
        finally:
            self.open_streams -= 1

        await response.write_eof()
        return response


class FakeSink:
    """Ingestion sink recording accepted envelopes; ``fail_next`` requests get 503."""

    def __init__(self):
        self.received: list[dict] = []
        self.attempts = 0
        self.fail_next = 0
        self.always_fail = False
        self.server: TestServer | None = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/", self.handle_post)
        return app

    @property
    def url(self) -> str:
        return str(self.server.make_url("/"))

    async def handle_post(self, request: web.Request) -> web.Response:
        self.attempts += 1
        body = await request.read()
        if self.always_fail or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            return web.Response(status=503)
        self.received.append(json.loads(body))
        return web.Response(status=200, text="ok")


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest_asyncio.fixture
async def source():
    fake = FakeSource()
    fake.server = TestServer(fake.app())
    await fake.server.start_server()
    yield fake
    await fake.server.close()


@pytest_asyncio.fixture
async def sink():
    fake = FakeSink()
    fake.server = TestServer(fake.app())
    await fake.server.start_server()
    yield fake
    await fake.server.close()


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
def offset_store(tmp_path):
    return OffsetStore(tmp_path / "workspace")


@pytest.fixture
def endpoint(source):
    return Endpoint(target_url=source.target_url, service_name="svc")


@pytest.fixture
def wait_until():
    return wait_for
