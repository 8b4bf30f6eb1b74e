"""Mode selector and failover controller.

Exactly one adapter is active at a time.  In automatic mode the selector
walks the chain relay, pub/sub, native feed, skipping adapters that are not
available and moving on when ``start()`` fails.  Once the chain is spent, or
the active adapter reports that it cannot continue, the proxy falls back to
the replay simulator for good.  If even the replay cannot start, the
selector parks in ``stopped``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from pyf1proxy._scheduler import Scheduler
from pyf1proxy.adapters import AdapterFactory
from pyf1proxy.adapters.base import AdapterSignal, Emit, SourceAdapter
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import AdapterUnavailableError
from pyf1proxy.hub import BroadcastHub
from pyf1proxy.state.events import EventKind, SourceMode, StateEvent
from pyf1proxy.state.handle import StateHandle
from pyf1proxy.state.store import LIVE_FLAG_KEY, StateStore

_logger = logging.getLogger(__name__)

AUTO_CHAIN: tuple[SourceMode, ...] = (SourceMode.RELAY, SourceMode.MQTT, SourceMode.SIGNALR)


class ModeSelector:
    """Owns the active adapter and publishes its events.

    Parameters
    ----------
    config : ProxyConfig
        ``config.mode`` forces a single mode instead of the automatic chain.
    store : StateStore
        The unified document; only the selector applies events to it.
    hub : BroadcastHub
        Receives every applied event.
    adapter_factory : callable
        ``(mode, on_signal) -> SourceAdapter``; called for every attempt.
    """

    def __init__(
        self,
        config: ProxyConfig,
        store: StateStore,
        hub: BroadcastHub,
        *,
        adapter_factory: AdapterFactory,
    ) -> None:
        self._config = config
        self._store = store
        self._hub = hub
        self._factory = adapter_factory
        self._lock = asyncio.Lock()
        self._scheduler = Scheduler(logger=_logger)
        self._active: SourceAdapter | None = None
        self._mode: SourceMode | None = None
        self._failed: set[SourceMode] = set()
        self._unavailable: set[SourceMode] = set()
        self._error: str | None = None
        self._closing = False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def mode(self) -> SourceMode | None:
        return self._mode

    @property
    def active(self) -> SourceAdapter | None:
        return self._active

    @property
    def is_stopped(self) -> bool:
        return self._mode == SourceMode.STOPPED

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def failed_modes(self) -> frozenset[SourceMode]:
        return frozenset(self._failed)

    @property
    def relay_available(self) -> bool:
        return self._config.has_relay and SourceMode.RELAY not in self._failed

    @property
    def mqtt_available(self) -> bool:
        return self._config.has_openf1_credentials and SourceMode.MQTT not in self._unavailable

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Activate the first usable source (forced mode or automatic chain)."""
        async with self._lock:
            forced = self._config.mode
            chain = (forced,) if forced is not None else AUTO_CHAIN
            for mode in chain:
                if self._closing:
                    return
                if mode == SourceMode.REPLAY:
                    break
                if await self._activate(mode):
                    return
            _logger.info("No live source available, starting replay")
            await self._enter_replay()

    def start_background(self) -> None:
        """Run :meth:`start` without waiting for it."""
        self._scheduler.spawn(self.start, name="mode-select")

    async def stop(self) -> None:
        self._closing = True
        await self._scheduler.cancel_all()
        async with self._lock:
            adapter, self._active = self._active, None
            if adapter is not None:
                await adapter.stop()

    async def __aenter__(self) -> ModeSelector:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: StateEvent) -> None:
        """Merge *event* into the store and broadcast it."""
        if event.data and (event.kind == EventKind.INITIAL or not self._store.is_live):
            event = event.with_data(_mark_live(event.data))
        self._store.apply(event)
        self._hub.broadcast(event.kind.value, event.data)

    def _emit_for(self, adapter: SourceAdapter) -> Emit:
        def emit(event: StateEvent) -> None:
            if adapter is not self._active:
                _logger.debug("Dropping %s event from inactive %s source", event.kind, event.source)
                return
            self.publish(event)

        return emit

    # ------------------------------------------------------------------
    # Transitions (always under self._lock)
    # ------------------------------------------------------------------

    async def _activate(self, mode: SourceMode) -> bool:
        try:
            adapter = self._factory(mode, self._on_signal)
        except AdapterUnavailableError as exc:
            _logger.warning("%s source cannot be created: %s", mode, exc)
            return False
        if not adapter.is_available:
            _logger.info("%s source not available, skipping", mode)
            return False
        self._active = adapter
        handle = StateHandle(self._store, is_current=lambda: self._active is adapter)
        try:
            started = await adapter.start(self._emit_for(adapter), handle)
        except Exception:
            _logger.exception("%s source raised while starting", mode)
            self._active = None
            await adapter.stop()
            started = False
        if not started:
            _logger.info("%s source failed to start", mode)
            self._failed.add(mode)
            if not adapter.is_available:
                self._unavailable.add(mode)
            if self._active is adapter:
                self._active = None
            return False
        self._mode = mode
        _logger.info("Mode: %s", mode)
        return True

    async def _enter_replay(self) -> None:
        if await self._activate(SourceMode.REPLAY):
            return
        self._active = None
        self._mode = SourceMode.STOPPED
        self._error = "Replay could not be started"
        self._store.clear()
        _logger.error("Replay could not be started, proxy stopped")

    def _on_signal(self, adapter: SourceAdapter, signal: AdapterSignal) -> None:
        if adapter is not self._active or self._closing:
            return
        self._scheduler.spawn(lambda: self._handle_signal(adapter, signal), name=f"failover-{signal}")

    async def _handle_signal(self, adapter: SourceAdapter, signal: AdapterSignal) -> None:
        async with self._lock:
            if adapter is not self._active or self._closing:
                return
            self._failed.add(adapter.mode)
            if signal == AdapterSignal.UNAVAILABLE:
                self._unavailable.add(adapter.mode)
            _logger.warning("%s source reported %s, switching to replay", adapter.mode, signal)
            if signal == AdapterSignal.NO_SESSION:
                # Replay's initial state goes out before the native client is torn down.
                await self._enter_replay()
                await adapter.stop()
                return
            self._active = None
            await adapter.stop()
            await self._enter_replay()


def _mark_live(data: Mapping[str, Any]) -> dict[str, Any]:
    marked = dict(data)
    info = marked.get("SessionInfo")
    marked["SessionInfo"] = {**info, LIVE_FLAG_KEY: True} if isinstance(info, Mapping) else {LIVE_FLAG_KEY: True}
    return marked
