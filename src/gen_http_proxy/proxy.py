"""Upstream forwarding for gen-http-proxy.

Relays HTTP requests and WebSocket sessions to the single configured upstream.
Connection failures are reported as UpstreamConnectionError; everything else
about the exchange is passed through untouched.
"""

import asyncio
import errno
import logging
from typing import Optional

import aiohttp
from aiohttp import WSMsgType, web
from multidict import CIMultiDict

from .config import ProxyConfig
from .exceptions import UpstreamConnectionError

logger = logging.getLogger(__name__)

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers aiohttp's WebSocket client generates itself
WS_HANDSHAKE = {
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
    "host",
}

CHUNK_SIZE = 64 * 1024


def is_websocket_upgrade(request: web.BaseRequest) -> bool:
    """Check if the request asks for a WebSocket protocol switch."""
    connection = request.headers.get("Connection", "").lower()
    upgrade = request.headers.get("Upgrade", "").lower()
    return "upgrade" in connection and upgrade == "websocket"


def filter_headers(headers, drop=HOP_BY_HOP) -> CIMultiDict:
    """Copy ``headers`` without hop-by-hop entries, keeping repeated names."""
    return CIMultiDict((k, v) for k, v in headers.items() if k.lower() not in drop)


def error_code(exc: BaseException) -> str:
    """Name an upstream failure the way the OS does (``ECONNREFUSED``...)."""
    if isinstance(exc, asyncio.TimeoutError):
        return "ETIMEDOUT"
    number = getattr(exc, "errno", None)
    if isinstance(number, int) and number in errno.errorcode:
        return errno.errorcode[number]
    return type(exc).__name__


class UpstreamForwarder:
    """Forward requests to ``config.target``.

    The client session is opened by ``start()`` and closed by ``close()``; the
    server wires both into the application lifecycle.
    """

    def __init__(self, config: ProxyConfig):
        self.target = config.target
        self.session: Optional[aiohttp.ClientSession] = None

    @property
    def base_url(self) -> str:
        return f"http://{self.target.host}:{self.target.port_number('target')}"

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                auto_decompress=False,
                cookie_jar=aiohttp.DummyCookieJar(),
            )

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    def _raise_connection_error(self, exc: BaseException):
        code = error_code(exc)
        raise UpstreamConnectionError(code, str(self.target), original_error=exc) from exc

    # =========================================================================
    # HTTP
    # =========================================================================

    async def forward_http(self, request: web.Request,
                           response: web.StreamResponse) -> web.StreamResponse:
        """
        Relay ``request`` upstream and stream the answer through ``response``.

        ``response`` must not be prepared yet; headers set on it beforehand
        (the session cookie) are sent along with the upstream's.

        Raises:
            UpstreamConnectionError: if the upstream cannot be reached or drops
                the connection mid-body; ``response`` is already prepared then
        """
        await self.start()
        url = self.base_url + request.rel_url.raw_path_qs
        headers = filter_headers(request.headers)
        body = request.content if request.body_exists else None

        try:
            upstream = await self.session.request(
                request.method,
                url,
                headers=headers,
                data=body,
                allow_redirects=False,
                skip_auto_headers=("User-Agent", "Accept-Encoding", "Content-Type"),
            )
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError, OSError) as e:
            self._raise_connection_error(e)

        async with upstream:
            response.set_status(upstream.status, upstream.reason)
            for key, value in upstream.headers.items():
                if key.lower() not in HOP_BY_HOP:
                    response.headers.add(key, value)

            await response.prepare(request)
            try:
                async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
                    await response.write(chunk)
            except (aiohttp.ClientPayloadError, aiohttp.ClientConnectionError,
                    asyncio.TimeoutError) as e:
                self._raise_connection_error(e)
            await response.write_eof()

        logger.debug(f"{request.method} {request.rel_url.path} -> {upstream.status}")
        return response

    # =========================================================================
    # WEBSOCKET
    # =========================================================================

    async def forward_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """
        Connect to the upstream WebSocket, then accept the client's upgrade and
        relay frames both ways until either side closes.

        Raises:
            UpstreamConnectionError: if the upstream handshake cannot be made
        """
        await self.start()
        url = self.base_url + request.rel_url.raw_path_qs
        protocols = [
            p.strip()
            for p in request.headers.get("Sec-WebSocket-Protocol", "").split(",")
            if p.strip()
        ]
        headers = filter_headers(request.headers, HOP_BY_HOP | WS_HANDSHAKE)

        try:
            upstream_ws = await self.session.ws_connect(
                url,
                headers=headers,
                protocols=protocols,
                autoping=False,
            )
        except (aiohttp.ClientConnectionError, aiohttp.WSServerHandshakeError,
                asyncio.TimeoutError, OSError) as e:
            self._raise_connection_error(e)

        client_ws = web.WebSocketResponse(
            protocols=[upstream_ws.protocol] if upstream_ws.protocol else (),
            autoping=False,
        )
        await client_ws.prepare(request)
        logger.debug(f"WebSocket {request.rel_url.path} connected to {self.target}")

        try:
            await asyncio.gather(
                _relay(client_ws, upstream_ws),
                _relay(upstream_ws, client_ws),
            )
        finally:
            await upstream_ws.close()
            await client_ws.close()

        return client_ws


async def _relay(source, sink):
    """Copy frames from ``source`` to ``sink`` until ``source`` closes."""
    async for msg in source:
        if sink.closed:
            break
        if msg.type == WSMsgType.TEXT:
            await sink.send_str(msg.data)
        elif msg.type == WSMsgType.BINARY:
            await sink.send_bytes(msg.data)
        elif msg.type == WSMsgType.PING:
            await sink.ping(msg.data)
        elif msg.type == WSMsgType.PONG:
            await sink.pong(msg.data)
        elif msg.type == WSMsgType.ERROR:
            logger.warning(f"WebSocket relay error: {source.exception()}")
            break
    if not sink.closed:
        await sink.close(code=source.close_code or 1000)
