"""Pytest configuration and shared fixtures."""

import dataclasses

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from gen_http_proxy.config import Address, FallbackPolicy, Integer, ProxyConfig
from gen_http_proxy.server import create_app

TOKEN = "s3cr3t"


# ============================================================================
# Upstream
# ============================================================================

async def _echo(request: web.Request) -> web.StreamResponse:
    if request.headers.get("Upgrade", "").lower() == "websocket":
        return await _ws_echo(request)
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": request.path_qs,
            "body": body.decode(),
            "host": request.headers.get("Host"),
            "cookie": request.headers.get("Cookie"),
            "multi": request.headers.getall("X-Multi", []),
        },
        headers={"X-Upstream": "echo"},
    )


async def _truncated(request: web.Request) -> web.StreamResponse:
    """Promise 100 bytes, send a few, then drop the connection."""
    response = web.StreamResponse(headers={"Content-Length": "100"})
    await response.prepare(request)
    await response.write(b"partial")
    request.transport.close()
    return response


async def _ws_echo(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    async for msg in ws:
        if msg.type == aiohttp.WSMsgType.TEXT:
            await ws.send_str(f"echo: {msg.data}")
        elif msg.type == aiohttp.WSMsgType.BINARY:
            await ws.send_bytes(msg.data[::-1])
    return ws


def make_upstream_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/truncated", _truncated)
    app.router.add_route("*", "/{tail:.*}", _echo)
    return app


@pytest_asyncio.fixture
async def upstream():
    """A live echo server standing in for the proxied service."""
    server = TestServer(make_upstream_app())
    await server.start_server()
    yield server
    await server.close()


# ============================================================================
# Gateway
# ============================================================================

def make_config(target_port: int = 3000, **overrides) -> ProxyConfig:
    """Config with a known token, listening on an ephemeral port."""
    config = ProxyConfig(
        listen=Address("127.0.0.1", Integer(0)),
        target=Address("127.0.0.1", Integer(target_port)),
        token=TOKEN,
        fallback=FallbackPolicy.REJECT,
    )
    return dataclasses.replace(config, **overrides)


@pytest.fixture
def config_for(upstream):
    """Build a config pointing at the live upstream."""
    def _make(**overrides) -> ProxyConfig:
        return make_config(target_port=upstream.port, **overrides)
    return _make


@pytest_asyncio.fixture
async def gateway():
    """Factory starting a gateway client for a config (and optional forwarder)."""
    clients = []

    async def _start(config: ProxyConfig, forwarder=None) -> TestClient:
        client = TestClient(
            TestServer(create_app(config, forwarder)),
            cookie_jar=aiohttp.DummyCookieJar(),
        )
        await client.start_server()
        clients.append(client)
        return client

    yield _start

    for client in clients:
        await client.close()
