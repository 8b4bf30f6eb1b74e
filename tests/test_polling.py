from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest
from yarl import URL

from pyf1proxy._api.openf1 import OpenF1Api
from pyf1proxy.adapters.polling import PollingAdapter
from pyf1proxy.config import ProxyConfig
from pyf1proxy.state.events import StateEvent
from pyf1proxy.state.handle import StateHandle
from pyf1proxy.state.store import StateStore

_RESPONSES: dict[str, list[dict[str, Any]]] = {
    "sessions": [{"session_key": 9606, "session_name": "Race", "location": "Baku", "circuit_key": 144}],
    "drivers": [{"driver_number": 16, "name_acronym": "LEC"}, {"driver_number": 81, "name_acronym": "PIA"}],
    "position": [
        {"date": "2024-09-15T11:10:02+00:00", "driver_number": 16, "position": 1},
        {"date": "2024-09-15T11:10:00+00:00", "driver_number": 16, "position": 2},
        {"date": "2024-09-15T11:10:01+00:00", "driver_number": 81, "position": 2},
    ],
    "intervals": [
        {"date": "2024-09-15T11:10:01+00:00", "driver_number": 81, "gap_to_leader": 0.8, "interval": 0.8},
    ],
    "laps": [
        {"driver_number": 81, "lap_number": 11, "lap_duration": 106.1},
        {"driver_number": 81, "lap_number": 12, "lap_duration": 105.9},
    ],
    "stints": [{"driver_number": 16, "stint_number": 1, "compound": "HARD", "lap_start": 1}],
    "race_control": [{"date": "2024-09-15T11:00:00+00:00", "message": "GREEN LIGHT", "flag": "GREEN"}],
}


class _FakeTransport:
    def __init__(self, responses: dict[str, list[dict[str, Any]]]) -> None:
        self._responses = responses

    async def get_json(self, url: str | URL, *, headers: Mapping[str, str] | None = None) -> Any:
        return self._responses.get(URL(str(url)).path.rsplit("/", 1)[-1], [])

    async def post_form(self, url: str | URL, form: Mapping[str, str]) -> dict[str, Any]:
        raise AssertionError("unexpected POST")

    async def get_json_with_cookies(
        self, url: str | URL, *, headers: Mapping[str, str] | None = None
    ) -> tuple[Any, str]:
        raise AssertionError("unexpected GET")


async def _start(responses: dict[str, list[dict[str, Any]]]) -> tuple[PollingAdapter, StateStore, bool]:
    store = StateStore()
    config = ProxyConfig(poll_interval=60.0)
    adapter = PollingAdapter(config, OpenF1Api(_FakeTransport(responses), config.openf1_api_base))
    started = await adapter.start(lambda event: store.apply(event), StateHandle(store))
    return adapter, store, started


@pytest.mark.asyncio
async def test_no_session_means_no_start() -> None:
    adapter, store, started = await _start({})
    assert not started
    assert not adapter.is_running
    assert not store.has_state


@pytest.mark.asyncio
async def test_start_publishes_session_and_first_window() -> None:
    adapter, store, started = await _start(_RESPONSES)
    try:
        assert started
        assert adapter.session is not None and adapter.session.session_key == 9606
        assert adapter.last_poll is not None

        state = store.snapshot()
        assert state["SessionInfo"]["Meeting"]["Name"] == "Baku"
        assert set(state["DriverList"]) == {"16", "81"}
        assert state["TrackStatus"] == {"Status": "1", "Message": "AllClear"}
        assert state["RaceControlMessages"]["Messages"][0]["Message"] == "GREEN LIGHT"

        lines = state["TimingData"]["Lines"]
        assert lines["16"]["Position"] == "1"
        assert lines["81"]["Position"] == "2"
        assert lines["81"]["GapToLeader"] == "+0.800"
        assert lines["81"]["NumberOfLaps"] == 12
        assert lines["81"]["LastLapTime"]["Value"] == "1:45.900"
        assert state["LapCount"] == {"CurrentLap": 12}
        assert state["TimingAppData"]["Lines"]["16"]["Stints"]["0"]["Compound"] == "HARD"
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_overlapping_windows_do_not_duplicate_messages() -> None:
    adapter, store, _ = await _start(_RESPONSES)
    try:
        await adapter.poll()
        await adapter.poll()
        assert len(store.get("RaceControlMessages")["Messages"]) == 1
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_results_after_stop_are_ignored() -> None:
    adapter, store, _ = await _start(_RESPONSES)
    await adapter.stop()
    store.clear()
    await adapter.poll()
    assert not store.has_state
