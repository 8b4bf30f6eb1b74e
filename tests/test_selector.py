from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyf1proxy._sse import format_event
from pyf1proxy.adapters.base import AdapterSignal, Emit, SignalCallback
from pyf1proxy.config import ProxyConfig
from pyf1proxy.hub import BroadcastHub, Subscriber
from pyf1proxy.selector import ModeSelector
from pyf1proxy.state.events import SourceMode, StateEvent
from pyf1proxy.state.handle import StateHandle
from pyf1proxy.state.store import StateStore


class _FakeAdapter:
    def __init__(
        self,
        mode: SourceMode,
        on_signal: SignalCallback,
        log: list[tuple[str, SourceMode]],
        *,
        available: bool = True,
        starts: bool = True,
        raises: Exception | None = None,
        initial: dict[str, Any] | None = None,
    ) -> None:
        self.mode = mode
        self.on_signal = on_signal
        self.log = log
        self.available = available
        self.starts = starts
        self.raises = raises
        self.initial = initial
        self.emit: Emit | None = None
        self.running = False

    @property
    def is_available(self) -> bool:
        return self.available

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self, emit: Emit, state: StateHandle) -> bool:
        self.log.append(("start", self.mode))
        if self.raises is not None:
            self.running = True
            raise self.raises
        if not self.starts:
            return False
        self.emit = emit
        self.running = True
        if self.initial is not None:
            emit(StateEvent.initial(self.mode, self.initial))
        return True

    async def stop(self) -> None:
        self.log.append(("stop", self.mode))
        self.running = False

    def publish(self, data: dict[str, Any]) -> None:
        assert self.emit is not None
        self.emit(StateEvent.update(self.mode, data))

    def signal(self, signal: AdapterSignal) -> None:
        self.on_signal(self, signal)  # type: ignore[arg-type]


class _Factory:
    """Builds fake adapters; ``behaviour`` holds per-mode constructor overrides."""

    def __init__(self, **behaviour: dict[str, Any]) -> None:
        self.behaviour = behaviour
        self.log: list[tuple[str, SourceMode]] = []
        self.built: dict[SourceMode, _FakeAdapter] = {}

    def __call__(self, mode: SourceMode, on_signal: SignalCallback) -> _FakeAdapter:
        adapter = _FakeAdapter(mode, on_signal, self.log, **self.behaviour.get(mode.value, {}))
        self.built[mode] = adapter
        return adapter


def _selector(factory: _Factory, config: ProxyConfig | None = None) -> tuple[ModeSelector, StateStore, BroadcastHub]:
    store = StateStore()
    hub = BroadcastHub(store)
    selector = ModeSelector(config or ProxyConfig(), store, hub, adapter_factory=factory)
    return selector, store, hub


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_chain_skips_unavailable_and_failed_sources() -> None:
    factory = _Factory(relay={"starts": False}, mqtt={"available": False})
    selector, _, _ = _selector(factory, ProxyConfig(relay_host="relay.example"))

    await selector.start()

    assert selector.mode == SourceMode.SIGNALR
    assert selector.active is factory.built[SourceMode.SIGNALR]
    assert factory.log == [("start", SourceMode.RELAY), ("start", SourceMode.SIGNALR)]
    assert selector.failed_modes == {SourceMode.RELAY}
    assert selector.relay_available is False


@pytest.mark.asyncio
async def test_exhausted_chain_falls_back_to_replay() -> None:
    factory = _Factory(relay={"starts": False}, mqtt={"starts": False}, signalr={"starts": False})
    selector, _, _ = _selector(factory)

    await selector.start()

    assert selector.mode == SourceMode.REPLAY
    assert factory.log[-1] == ("start", SourceMode.REPLAY)


@pytest.mark.asyncio
async def test_forced_mode_tries_only_that_source() -> None:
    factory = _Factory(signalr={"starts": False})
    selector, _, _ = _selector(factory, ProxyConfig(mode=SourceMode.SIGNALR))

    await selector.start()

    assert factory.log == [("start", SourceMode.SIGNALR), ("start", SourceMode.REPLAY)]
    assert selector.mode == SourceMode.REPLAY


@pytest.mark.asyncio
async def test_forced_replay_skips_live_sources() -> None:
    factory = _Factory()
    selector, _, _ = _selector(factory, ProxyConfig(mode=SourceMode.REPLAY))
    await selector.start()
    assert factory.log == [("start", SourceMode.REPLAY)]


@pytest.mark.asyncio
async def test_replay_failure_stops_proxy_and_clears_state() -> None:
    factory = _Factory(
        relay={"starts": False}, mqtt={"starts": False}, signalr={"starts": False}, replay={"starts": False}
    )
    selector, store, _ = _selector(factory)
    store.merge({"LapCount": {"CurrentLap": 3}})

    await selector.start()

    assert selector.is_stopped
    assert selector.mode == SourceMode.STOPPED
    assert selector.active is None
    assert selector.error
    assert not store.has_state


@pytest.mark.asyncio
async def test_source_raising_during_start_is_treated_as_failed() -> None:
    factory = _Factory(relay={"raises": RuntimeError("boom")}, mqtt={"available": False})
    selector, _, _ = _selector(factory, ProxyConfig(relay_host="relay.example"))

    await selector.start()

    assert selector.mode == SourceMode.SIGNALR
    assert selector.failed_modes == {SourceMode.RELAY}
    assert not factory.built[SourceMode.RELAY].running
    assert ("stop", SourceMode.RELAY) in factory.log


@pytest.mark.asyncio
async def test_replay_raising_during_start_stops_proxy() -> None:
    factory = _Factory(replay={"raises": asyncio.TimeoutError()})
    selector, _, _ = _selector(factory, ProxyConfig(mode=SourceMode.REPLAY))

    selector.start_background()
    await _settle()

    assert selector.is_stopped
    assert selector.mode == SourceMode.STOPPED
    assert selector.active is None
    assert selector.error
    await selector.stop()


@pytest.mark.asyncio
async def test_initial_event_is_marked_live_and_broadcast() -> None:
    factory = _Factory(relay={"initial": {"SessionInfo": {"Name": "Race"}}})
    selector, store, hub = _selector(factory, ProxyConfig(relay_host="relay.example"))
    subscriber = Subscriber()
    hub.register(subscriber)

    await selector.start()

    expected = {"SessionInfo": {"Name": "Race", "isLive": True}}
    assert store.snapshot() == expected
    assert await subscriber.next_frame() == format_event("initial", expected)


@pytest.mark.asyncio
async def test_first_update_of_a_fresh_store_marks_it_live() -> None:
    factory = _Factory()
    selector, store, _ = _selector(factory)
    await selector.start()
    relay = factory.built[SourceMode.RELAY]

    relay.publish({"LapCount": {"CurrentLap": 1}})
    assert store.is_live

    relay.publish({"LapCount": {"CurrentLap": 2}})
    assert store.snapshot() == {"LapCount": {"CurrentLap": 2}, "SessionInfo": {"isLive": True}}


@pytest.mark.asyncio
async def test_exhausted_source_is_stopped_before_replay_starts() -> None:
    factory = _Factory()
    selector, store, _ = _selector(factory)
    await selector.start()
    relay = factory.built[SourceMode.RELAY]

    relay.signal(AdapterSignal.EXHAUSTED)
    await _settle()

    assert selector.mode == SourceMode.REPLAY
    assert factory.log[-2:] == [("stop", SourceMode.RELAY), ("start", SourceMode.REPLAY)]

    # Late events from the retired source never reach the store.
    relay.publish({"LapCount": {"CurrentLap": 9}})
    assert "LapCount" not in store


@pytest.mark.asyncio
async def test_no_session_starts_replay_before_stopping_native_client() -> None:
    factory = _Factory(relay={"starts": False}, mqtt={"starts": False})
    selector, _, _ = _selector(factory)
    await selector.start()
    assert selector.mode == SourceMode.SIGNALR

    factory.built[SourceMode.SIGNALR].signal(AdapterSignal.NO_SESSION)
    await _settle()

    assert selector.mode == SourceMode.REPLAY
    assert factory.log[-2:] == [("start", SourceMode.REPLAY), ("stop", SourceMode.SIGNALR)]


@pytest.mark.asyncio
async def test_rejected_credentials_mark_pubsub_unavailable() -> None:
    factory = _Factory(relay={"starts": False})
    config = ProxyConfig(openf1_username="user", openf1_password="secret")
    selector, _, _ = _selector(factory, config)
    await selector.start()
    assert selector.mode == SourceMode.MQTT
    assert selector.mqtt_available

    factory.built[SourceMode.MQTT].signal(AdapterSignal.UNAVAILABLE)
    await _settle()

    assert selector.mode == SourceMode.REPLAY
    assert not selector.mqtt_available


@pytest.mark.asyncio
async def test_signals_from_inactive_sources_are_ignored() -> None:
    factory = _Factory()
    selector, _, _ = _selector(factory)
    await selector.start()
    stale = _FakeAdapter(SourceMode.SIGNALR, selector._on_signal, factory.log)

    stale.signal(AdapterSignal.EXHAUSTED)
    await _settle()

    assert selector.mode == SourceMode.RELAY


@pytest.mark.asyncio
async def test_stop_stops_active_source() -> None:
    factory = _Factory()
    store = StateStore()
    async with ModeSelector(ProxyConfig(), store, BroadcastHub(store), adapter_factory=factory) as selector:
        assert selector.mode == SourceMode.RELAY
    assert factory.log == [("start", SourceMode.RELAY), ("stop", SourceMode.RELAY)]
    assert selector.active is None
