"""Primary-feed relay.

Consumes an already-aggregated upstream event stream that speaks the same
document format this proxy serves.  The first event of every connection
(normally named ``initial``) replaces the whole document; later events are
partial updates.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from pyf1proxy._constants import RELAY_BACKOFF_CAP
from pyf1proxy._sse import SseEvent, SseParser
from pyf1proxy.adapters.base import AdapterSignal, BaseAdapter, SignalCallback
from pyf1proxy.config import ProxyConfig
from pyf1proxy.state.events import SourceMode

_STREAM_TIMEOUT = aiohttp.ClientTimeout(total=None)


class RelayAdapter(BaseAdapter):
    mode = SourceMode.RELAY

    def __init__(
        self,
        config: ProxyConfig,
        http_session: aiohttp.ClientSession,
        *,
        on_signal: SignalCallback | None = None,
    ) -> None:
        super().__init__(config, on_signal=on_signal)
        self._http = http_session
        self._parser = SseParser()
        self._response: aiohttp.ClientResponse | None = None
        self._attempts = 0
        self._got_first_event = False

    @property
    def is_available(self) -> bool:
        return self._config.has_relay

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    async def _open(self) -> bool:
        self._attempts = 0
        # A failed first connect fails start() so the selector moves down the
        # chain now; backoff only applies once the stream has been established.
        return await self._connect()

    async def _close(self) -> None:
        response = self._response
        self._response = None
        if response is not None:
            response.close()

    async def _connect(self) -> bool:
        url = self._config.relay_url
        if url is None:
            return False
        self._logger.info("Connecting to relay %s", url)
        try:
            response = await self._http.get(
                url,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                timeout=_STREAM_TIMEOUT,
            )
        except (aiohttp.ClientError, OSError) as exc:
            self._logger.warning("Relay request failed: %s", exc)
            return False
        if response.status != 200:
            self._logger.warning("Relay responded with HTTP %s", response.status)
            response.close()
            return False
        if not self._running:
            response.close()
            return False

        self._logger.info("Connected to relay stream")
        self._response = response
        self._attempts = 0
        self._got_first_event = False
        self._parser.reset()
        self._scheduler.spawn(lambda: self._read(response), name="relay-read")
        return True

    async def _read(self, response: aiohttp.ClientResponse) -> None:
        try:
            async for chunk in response.content.iter_any():
                for event in self._parser.feed(chunk):
                    self._handle_event(event)
            self._logger.info("Relay stream ended")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            self._logger.warning("Relay stream error: %s", exc)
        finally:
            response.close()
            if self._response is response:
                self._response = None
        if self._running:
            self._schedule_reconnect()

    def _handle_event(self, event: SseEvent) -> None:
        try:
            payload: Any = event.json()
        except json.JSONDecodeError:
            self._logger.debug("Dropping unparsable relay event %s", event.event, exc_info=True)
            return
        if not isinstance(payload, dict):
            self._logger.debug("Dropping non-object relay event %s", event.event)
            return

        initial = event.event == "initial" or not self._got_first_event
        if event.event not in {"initial", "update"} and self._got_first_event:
            self._logger.debug("Ignoring relay event %s", event.event)
            return
        self._got_first_event = True
        if initial:
            drivers = payload.get("DriverList")
            self._logger.info(
                "Received initial relay state (%d domains, %d drivers)",
                len(payload),
                len(drivers) if isinstance(drivers, dict) else 0,
            )
        self._publish(payload, initial=initial)

    def _schedule_reconnect(self) -> None:
        if not self._running:
            return
        if self._attempts >= self._config.relay_max_reconnect_attempts:
            self._logger.warning("Relay reconnect attempts exhausted")
            self._signal(AdapterSignal.EXHAUSTED)
            return
        self._attempts += 1
        delay = self._config.relay_reconnect_delay * min(self._attempts, RELAY_BACKOFF_CAP)
        self._logger.info(
            "Reconnecting to relay in %.1fs (attempt %d/%d)",
            delay,
            self._attempts,
            self._config.relay_max_reconnect_attempts,
        )
        self._scheduler.once(delay, self._reconnect, name="relay-reconnect")

    async def _reconnect(self) -> None:
        if not self._running:
            return
        if not await self._connect():
            self._schedule_reconnect()
