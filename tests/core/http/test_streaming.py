"""Tests for streaming GET helpers."""

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.http.client import create_session
from core.http.streaming import open_stream

BODY = b"line-1\nline-2\nline-3\n" * 100


@pytest_asyncio.fixture
async def server():
    async def body(request):
        response = web.StreamResponse()
        await response.prepare(request)
        for i in range(0, len(BODY), 256):
            await response.write(BODY[i : i + 256])
        await response.write_eof()
        return response

    async def missing(request):
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/body", body)
    app.router.add_get("/missing", missing)
    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def session():
    client_session = create_session()
    yield client_session
    await client_session.close()


class TestOpenStream:

    async def test_yields_whole_body_in_bounded_chunks(self, server, session):
        response, error = await open_stream(str(server.make_url("/body")), session, chunk_size=100)

        assert error is None
        chunks = [chunk async for chunk in response.chunk_iterator]
        await response.close()

        assert b"".join(chunks) == BODY
        assert max(len(c) for c in chunks) <= 100

    async def test_non_200_returns_error(self, server, session):
        response, error = await open_stream(str(server.make_url("/missing")), session)

        assert response is None
        assert error.status_code == 404

    async def test_close_before_reading_releases_connection(self, server, session):
        response, _ = await open_stream(str(server.make_url("/body")), session)

        await response.close()
        await response.close()

    async def test_close_mid_stream(self, server, session):
        response, _ = await open_stream(str(server.make_url("/body")), session, chunk_size=10)

        async for _chunk in response.chunk_iterator:
            break
        await response.close()
