"""Native live timing client (SignalR over WebSocket).

Handshake:
  1. ``GET /signalr/negotiate`` returns a ``ConnectionToken`` and a cookie.
  2. ``GET /signalr/connect`` upgrades to a WebSocket carrying both.
  3. One ``Subscribe`` invocation names every topic of interest.

The reply to the subscription (``R``) is the full current state; pushed
invocations (``M``) carry one topic update each.  Topics ending in ``.z``
are base64-encoded raw deflate streams.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import zlib
from collections.abc import Mapping
from typing import Any

import aiohttp
from yarl import URL

from pyf1proxy._constants import (
    SESSION_ENDED_STATUSES,
    SIGNALR_CLIENT_PROTOCOL,
    SIGNALR_HUB,
    SIGNALR_TOPICS,
    SIGNALR_USER_AGENT,
)
from pyf1proxy._redact import redact_url
from pyf1proxy._transport import HttpTransport, Transport
from pyf1proxy.adapters.base import AdapterSignal, BaseAdapter, SignalCallback
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import MalformedPayloadError, TransportError
from pyf1proxy.state.events import SourceMode

CONNECTION_DATA = json.dumps([{"name": SIGNALR_HUB}], separators=(",", ":"))

_HEADERS = {"User-Agent": SIGNALR_USER_AGENT, "Accept-Encoding": "gzip, identity"}


def subscribe_frame(topics: tuple[str, ...] = SIGNALR_TOPICS) -> str:
    return json.dumps({"H": SIGNALR_HUB, "M": "Subscribe", "A": [list(topics)], "I": 1})


def inflate(data: str) -> Any:
    """Decode a ``.z`` topic payload (base64 + raw deflate + JSON)."""
    try:
        raw = zlib.decompress(base64.b64decode(data), -zlib.MAX_WBITS)
        return json.loads(raw)
    except (binascii.Error, zlib.error, ValueError) as exc:
        raise MalformedPayloadError(f"Invalid compressed topic payload: {exc}") from exc


def decode_topic(topic: str, value: Any) -> tuple[str, Any]:
    """Return ``(domain key, decoded value)`` for one topic payload."""
    if topic.endswith(".z"):
        name = topic[:-2]
        return name, inflate(value) if isinstance(value, str) else value
    return topic, value


def decode_topics(topics: Mapping[str, Any]) -> dict[str, Any]:
    """Decode a topic-to-payload mapping, dropping payloads that fail to decode."""
    decoded: dict[str, Any] = {}
    for topic, value in topics.items():
        try:
            name, data = decode_topic(topic, value)
        except MalformedPayloadError:
            continue
        decoded[name] = data
    return decoded


def session_is_live(state: Mapping[str, Any]) -> bool:
    """Whether an initial payload describes a session that is running."""
    status = state.get("SessionStatus")
    if isinstance(status, Mapping) and status.get("Status") in SESSION_ENDED_STATUSES:
        return False
    info = state.get("SessionInfo")
    meeting = info.get("Meeting") if isinstance(info, Mapping) else None
    return isinstance(meeting, Mapping) and bool(meeting.get("Name"))


class SignalRAdapter(BaseAdapter):
    mode = SourceMode.SIGNALR

    def __init__(
        self,
        config: ProxyConfig,
        http_session: aiohttp.ClientSession,
        *,
        transport: Transport | None = None,
        on_signal: SignalCallback | None = None,
    ) -> None:
        super().__init__(config, on_signal=on_signal)
        self._http = http_session
        self._transport = transport or HttpTransport(http_session)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._attempts = 0
        self._handed_off = False

    @property
    def handed_off(self) -> bool:
        return self._handed_off

    def _url(self, path: str, *, websocket: bool = False, **query: str) -> URL:
        if websocket:
            scheme = "wss" if self._config.signalr_secure else "ws"
        else:
            scheme = "https" if self._config.signalr_secure else "http"
        params = {"clientProtocol": SIGNALR_CLIENT_PROTOCOL, **query, "connectionData": CONNECTION_DATA}
        return URL(f"{scheme}://{self._config.signalr_host}{path}").with_query(params)

    async def _open(self) -> bool:
        self._attempts = 0
        self._handed_off = False
        return await self._connect()

    async def _close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            await ws.close()

    async def negotiate(self) -> tuple[str, str]:
        """Return ``(connection token, cookie header)``."""
        body, cookie = await self._transport.get_json_with_cookies(self._url("/signalr/negotiate"), headers=_HEADERS)
        token = body.get("ConnectionToken") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise MalformedPayloadError("Negotiation response has no ConnectionToken")
        return token, cookie

    async def _connect(self) -> bool:
        self._logger.info("Negotiating live timing connection with %s", self._config.signalr_host)
        try:
            token, cookie = await self.negotiate()
        except (TransportError, MalformedPayloadError) as exc:
            self._logger.warning("Live timing negotiation failed: %s", exc)
            return False

        url = self._url("/signalr/connect", websocket=True, transport="webSockets", connectionToken=token)
        headers = dict(_HEADERS)
        if cookie:
            headers["Cookie"] = cookie
        self._logger.debug("Opening live timing socket %s", redact_url(str(url)))
        try:
            ws = await self._http.ws_connect(url, headers=headers)
        except (aiohttp.ClientError, OSError) as exc:
            self._logger.warning("Live timing socket failed: %s", exc)
            return False
        if not self._running:
            await ws.close()
            return False

        await ws.send_str(subscribe_frame())
        self._logger.info("Connected to live timing, subscribed to %d topics", len(SIGNALR_TOPICS))
        self._ws = ws
        self._attempts = 0
        self._scheduler.spawn(lambda: self._read(ws), name="signalr-read")
        return True

    async def _read(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._logger.warning("Live timing socket error: %s", ws.exception())
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            self._logger.warning("Live timing socket failed: %s", exc)
        finally:
            if self._ws is ws:
                self._ws = None
            if not ws.closed:
                await ws.close()
        self._logger.info("Live timing socket closed (code %s)", ws.close_code)
        if self._running and not self._handed_off:
            self._on_unexpected_close()

    def handle_frame(self, text: str) -> None:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            self._logger.debug("Dropping unparsable live timing frame", exc_info=True)
            return
        if not isinstance(message, dict) or not message:
            return
        initial = message.get("R")
        if isinstance(initial, dict):
            self._handle_initial(decode_topics(initial))
        invocations = message.get("M")
        if isinstance(invocations, list):
            for invocation in invocations:
                if isinstance(invocation, dict):
                    self._handle_invocation(invocation)

    def _handle_initial(self, data: dict[str, Any]) -> None:
        if not session_is_live(data):
            self._logger.info("No live session on the live timing feed")
            self._handed_off = True
            if self._on_signal is None:
                self._scheduler.spawn(self._close, name="signalr-close")
            self._signal(AdapterSignal.NO_SESSION)
            return
        self._logger.info("Received initial live timing state (%d topics)", len(data))
        self._publish(data, initial=True)

    def _handle_invocation(self, invocation: Mapping[str, Any]) -> None:
        args = invocation.get("A")
        if not isinstance(args, list) or not args:
            return
        if isinstance(args[0], str) and len(args) >= 2:
            update = decode_topics({args[0]: args[1]})
        elif isinstance(args[0], dict):
            update = decode_topics(args[0])
        else:
            return
        self._publish(update)

    def _on_unexpected_close(self) -> None:
        if self._state is not None:
            self._state.clear()
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._running or self._handed_off:
            return
        if self._attempts >= self._config.signalr_max_reconnect_attempts:
            self._logger.warning("Live timing reconnect attempts exhausted")
            self._signal(AdapterSignal.EXHAUSTED)
            return
        self._attempts += 1
        self._logger.info("Reconnecting to live timing in %.1fs", self._config.signalr_reconnect_delay)
        self._scheduler.once(self._config.signalr_reconnect_delay, self._reconnect, name="signalr-reconnect")

    async def _reconnect(self) -> None:
        if not self._running or self._handed_off:
            return
        if not await self._connect():
            self._schedule_reconnect()
