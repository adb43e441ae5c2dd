import asyncio

import pytest
from aiohttp import test_utils, web

from ratelimit_probe.classifier import classify, retry_after
from ratelimit_probe.clock import Clock
from ratelimit_probe.config import ProbeSettings
from ratelimit_probe.session import bootstrap_session
from ratelimit_probe.transport import HttpClient


def build_app() -> web.Application:
    async def login(request):
        body = await request.json()
        if body.get("password") != "123456":
            return web.json_response({"success": False, "message": "invalid credentials"}, status=401)
        return web.json_response({"success": True, "data": {"access_token": "server-token"}})

    async def limited(request):
        return web.json_response(
            {"success": False, "message": "Too many requests", "data": {"retry_after_seconds": 30}},
            status=429,
            headers={"Retry-After": "30"},
        )

    async def slow(request):
        await asyncio.sleep(1)
        return web.json_response({})

    async def echo(request):
        return web.json_response({
            "auth": request.headers.get("Authorization"),
            "query": dict(request.query),
        })

    app = web.Application()
    app.router.add_post("/api/login", login)
    app.router.add_get("/api/products", limited)
    app.router.add_get("/api/slow", slow)
    app.router.add_get("/api/echo", echo)
    return app


@pytest.mark.asyncio
class TestHttpClient:
    async def test_json_round_trip(self):
        async with test_utils.TestServer(build_app()) as server, HttpClient(timeout=5) as client:
            resp = await client.request(
                "GET",
                str(server.make_url("/api/echo")) + "?limit=5&page=2",
                headers={"Authorization": "Bearer abc"},
            )
        assert resp.status == 200
        assert resp.latency_ms > 0
        assert resp.json_path("auth") == "Bearer abc"
        assert resp.json()["query"] == {"limit": "5", "page": "2"}

    async def test_rate_limit_response(self):
        async with test_utils.TestServer(build_app()) as server, HttpClient(timeout=5) as client:
            resp = await client.request("GET", str(server.make_url("/api/products")))
        assert resp.status == 429
        assert classify(resp)
        assert retry_after(resp) == 30.0

    async def test_timeout_becomes_status_zero(self):
        async with test_utils.TestServer(build_app()) as server, HttpClient(timeout=0.1) as client:
            resp = await client.request("GET", str(server.make_url("/api/slow")))
        assert resp.status == 0
        assert resp.error == "Timeout"
        assert not classify(resp)

    async def test_connection_refused_becomes_status_zero(self):
        async with HttpClient(timeout=2) as client:
            resp = await client.request("GET", "http://127.0.0.1:1/api/products")
        assert resp.status == 0
        assert resp.error.startswith("ConnectionError")

    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError):
            await HttpClient().request("GET", "http://127.0.0.1:1/")

    async def test_bootstrap_against_server(self):
        async with test_utils.TestServer(build_app()) as server, HttpClient(timeout=5) as client:
            settings = ProbeSettings(base_url=str(server.make_url("/api")))
            session = await bootstrap_session(client, settings, Clock(0.001))
        assert session.token == "server-token"
