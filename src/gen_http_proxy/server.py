"""Request dispatch and listener for gen-http-proxy.

Every request goes through the session gate first. Allowed requests are
forwarded to the upstream; denied ones get the configured fallback.
"""

import asyncio
import functools
import logging
from typing import Optional

from aiohttp import web

from .auth import AuthDecision, SessionGate
from .config import FallbackPolicy, ProxyConfig, get_jinja_env
from .exceptions import UpstreamConnectionError
from .proxy import UpstreamForwarder, is_websocket_upgrade
from .ssl import create_ssl_context
from .static import serve_static

logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", ProxyConfig)
GATE_KEY = web.AppKey("gate", SessionGate)
FORWARDER_KEY = web.AppKey("forwarder", UpstreamForwarder)


def unauthorized() -> web.Response:
    return web.Response(status=401, text="Unauthorized")


@functools.lru_cache(maxsize=None)
def _login_template():
    return get_jinja_env().get_template("login_form.html")


def login_form(request: web.Request) -> web.Response:
    """401 with a form that resubmits the current path with ``?token=``."""
    template = _login_template()
    return web.Response(
        status=401,
        text=template.render(action=request.path),
        content_type="text/html",
    )


async def apply_fallback(request: web.Request, config: ProxyConfig) -> web.StreamResponse:
    """Answer a request the gate denied."""
    if config.fallback is FallbackPolicy.STATIC:
        return await serve_static(request, config.static_folder)
    if config.fallback is FallbackPolicy.LOGIN_FORM:
        return login_form(request)
    return unauthorized()


async def upstream_failed(request: web.Request, response: web.StreamResponse,
                          error: UpstreamConnectionError) -> web.StreamResponse:
    """Report an unreachable upstream as 500 with the error code as body."""
    logger.error(f"{request.method} {request.rel_url.path}: {error}")
    if response.prepared:
        # Headers already went out; drop the connection so the body reads as truncated.
        if request.transport is not None:
            request.transport.close()
        return response
    response.set_status(500)
    response.content_type = "text/plain"
    await response.prepare(request)
    await response.write(error.code.encode())
    await response.write_eof()
    return response


async def handle(request: web.Request) -> web.StreamResponse:
    """Gate the request, then forward it or fall back."""
    config = request.app[CONFIG_KEY]
    gate = request.app[GATE_KEY]
    forwarder = request.app[FORWARDER_KEY]

    if is_websocket_upgrade(request):
        if gate.evaluate(request) is AuthDecision.DENY:
            return unauthorized()
        try:
            return await forwarder.forward_websocket(request)
        except UpstreamConnectionError as e:
            logger.error(f"WebSocket {request.rel_url.path}: {e}")
            return web.Response(status=500, text=e.code)

    response = web.StreamResponse()
    if gate.evaluate(request, response) is AuthDecision.DENY:
        return await apply_fallback(request, config)

    try:
        return await forwarder.forward_http(request, response)
    except UpstreamConnectionError as e:
        return await upstream_failed(request, response, e)


def create_app(config: ProxyConfig,
               forwarder: Optional[UpstreamForwarder] = None) -> web.Application:
    """Create the aiohttp application for ``config``.

    ``forwarder`` replaces the default upstream transport.
    """
    app = web.Application()
    app[CONFIG_KEY] = config
    app[GATE_KEY] = SessionGate(config)
    app[FORWARDER_KEY] = forwarder or UpstreamForwarder(config)

    async def forwarder_ctx(app: web.Application):
        await app[FORWARDER_KEY].start()
        yield
        await app[FORWARDER_KEY].close()

    app.cleanup_ctx.append(forwarder_ctx)
    app.router.add_route("*", "/{tail:.*}", handle)
    return app


async def run_server(config: ProxyConfig, on_ready=None):
    """
    Serve ``config`` until cancelled.

    Args:
        config: Resolved configuration
        on_ready: Optional callback(config) invoked once the socket is bound

    Raises:
        ConfigurationError: if the listen or target port is unusable
        TLSConfigurationError: if ``config.secure`` and the key/cert cannot be loaded
    """
    port = config.listen.port_number("listen")
    config.target.port_number("target")
    ssl_context = create_ssl_context(config.keyfile, config.certfile) if config.secure else None

    runner = web.AppRunner(create_app(config))
    await runner.setup()
    site = web.TCPSite(runner, config.listen.host, port, ssl_context=ssl_context)
    await site.start()

    logger.info(f"Listening on {config.scheme}://{config.listen.host}:{port}")
    if on_ready is not None:
        on_ready(config)

    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Proxy shutting down...")
        await runner.cleanup()
