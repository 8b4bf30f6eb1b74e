"""HTTP boundary (aiohttp).

Routes:
  - ``GET /api/sse``: event stream (``initial`` snapshot, then ``update`` frames)
  - ``GET /api/state``: the full document
  - ``GET /health``: selector and hub status

Every response carries permissive CORS headers; ``OPTIONS`` always answers
204 and unknown routes answer a JSON 404.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import aiohttp
from aiohttp import web

from pyf1proxy.adapters import AdapterFactory, build_adapter
from pyf1proxy.adapters.base import SignalCallback, SourceAdapter
from pyf1proxy.config import ProxyConfig
from pyf1proxy.hub import BroadcastHub, Subscriber
from pyf1proxy.selector import ModeSelector
from pyf1proxy.state.events import SourceMode
from pyf1proxy.state.store import StateStore

_logger = logging.getLogger(__name__)

CONFIG = web.AppKey("config", ProxyConfig)
STORE = web.AppKey("store", StateStore)
HUB = web.AppKey("hub", BroadcastHub)
SELECTOR = web.AppKey("selector", ModeSelector)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=_CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPNotFound:
        response = web.json_response({"error": "Not found"}, status=404)
    if not response.prepared:
        response.headers.update(_CORS_HEADERS)
    return response


async def handle_health(request: web.Request) -> web.Response:
    selector = request.app[SELECTOR]
    body: dict[str, Any] = {
        "status": "stopped" if selector.is_stopped else "ok",
        "mode": selector.mode.value if selector.mode is not None else None,
        "clients": request.app[HUB].client_count,
        "hasState": request.app[STORE].has_state,
        "relayAvailable": selector.relay_available,
        "mqttAvailable": selector.mqtt_available,
    }
    if selector.is_stopped:
        body["error"] = selector.error
    return web.json_response(body)


async def handle_state(request: web.Request) -> web.Response:
    return web.json_response(request.app[STORE].snapshot())


async def handle_sse(request: web.Request) -> web.StreamResponse:
    hub = request.app[HUB]
    response = web.StreamResponse(headers={**_STREAM_HEADERS, **_CORS_HEADERS})
    await response.prepare(request)

    subscriber = Subscriber(maxsize=request.app[CONFIG].subscriber_queue_size, name=request.remote or "")
    hub.register(subscriber)
    _logger.info("Stream client connected (%d total)", hub.client_count)
    try:
        while (frame := await subscriber.next_frame()) is not None:
            await response.write(frame.encode("utf-8"))
    except ConnectionResetError:
        _logger.debug("Stream client %s went away", subscriber.name)
    finally:
        hub.unregister(subscriber)
        _logger.info("Stream client disconnected (%d total)", hub.client_count)
    return response


class UpstreamSession:
    """Client session shared by every adapter, opened with the app."""

    def __init__(self, config: ProxyConfig, session: aiohttp.ClientSession | None = None) -> None:
        self._config = config
        self._session = session
        self._owned = session is None

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        session, self._session = self._session, None
        if self._owned and session is not None:
            await session.close()

    def build(self, mode: SourceMode, on_signal: SignalCallback) -> SourceAdapter:
        if self._session is None:
            raise RuntimeError("Upstream session is not open")
        return build_adapter(mode, config=self._config, http_session=self._session, on_signal=on_signal)


def create_app(
    config: ProxyConfig,
    *,
    factory: AdapterFactory | None = None,
    http_session: aiohttp.ClientSession | None = None,
) -> web.Application:
    """Build the proxy application.

    Parameters
    ----------
    config : ProxyConfig
        Proxy configuration.
    factory : callable, optional
        Adapter factory; defaults to the real upstream adapters.
    http_session : aiohttp.ClientSession, optional
        Shared client session.  One is created (and closed) with the app
        when omitted.
    """
    upstream = UpstreamSession(config, http_session)
    store = StateStore()
    hub = BroadcastHub(store, keepalive_interval=config.keepalive_interval)
    selector = ModeSelector(config, store, hub, adapter_factory=factory or upstream.build)

    app = web.Application(middlewares=[cors_middleware])
    app[CONFIG] = config
    app[STORE] = store
    app[HUB] = hub
    app[SELECTOR] = selector

    async def sources(app: web.Application) -> AsyncIterator[None]:
        await upstream.open()
        hub.start()
        selector.start_background()
        _logger.info("Proxy listening on %s:%s, stream at /api/sse", config.host, config.port)
        yield
        await selector.stop()
        await upstream.close()

    async def close_streams(app: web.Application) -> None:
        await hub.stop()

    app.cleanup_ctx.append(sources)
    app.on_shutdown.append(close_streams)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/state", handle_state)
    app.router.add_get("/api/sse", handle_sse)
    return app
