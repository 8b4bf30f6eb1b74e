"""Historical race replay.

When no live source is usable the proxy replays an archived race from the
OpenF1 REST API.  Nothing is loaded up front: a virtual race clock advances
with real time (times ``replay_speed``) and every tick fetches only the
records in ``[last window end, virtual now)``, the way a live session would
trickle in.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from pyf1proxy._api.openf1 import OpenF1Api
from pyf1proxy._constants import DEFAULT_WEATHER, STARTING_GRID_WINDOW_SECONDS
from pyf1proxy.adapters.base import BaseAdapter, SignalCallback
from pyf1proxy.config import ProxyConfig
from pyf1proxy.exceptions import ReplayDataError
from pyf1proxy.ingestion.messages import ALL_CLEAR, race_control_partial, team_radio_partial
from pyf1proxy.ingestion.normalize import format_clock, to_iso
from pyf1proxy.ingestion.openf1 import (
    driver_entry,
    latest_intervals,
    latest_positions,
    location_partial,
    session_info,
)
from pyf1proxy.ingestion.timing import TimingBook
from pyf1proxy.models.openf1 import Driver, Position, Session, Stint
from pyf1proxy.state.events import SourceMode
from pyf1proxy.state.store import deep_merge


def starting_grid(positions: Iterable[Position]) -> dict[str, int]:
    """Grid slot per racing number.

    The grid is the burst of position reports published together when the
    session opens: everything within a couple of seconds of the first report.
    The first report per driver wins.
    """
    ordered = sorted(positions, key=lambda p: p.date)
    if not ordered:
        return {}
    cutoff = ordered[0].date + timedelta(seconds=STARTING_GRID_WINDOW_SECONDS)
    grid: dict[str, int] = {}
    for record in ordered:
        if record.date >= cutoff:
            break
        grid.setdefault(str(record.driver_number), record.position)
    return grid


def timing_line(slot: int) -> dict[str, Any]:
    """Blank timing line for a car sitting in grid *slot*."""
    ahead = "" if slot == 1 else "---"
    return {
        "Line": slot,
        "Position": str(slot),
        "GapToLeader": ahead,
        "IntervalToPositionAhead": {"Value": ahead},
        "LastLapTime": {"Value": ""},
        "BestLapTime": {"Value": ""},
        "NumberOfLaps": 0,
        "NumberOfPitStops": 0,
        "Sectors": {str(i): {"Value": "", "Segments": []} for i in range(3)},
        "InPit": False,
        "PitOut": False,
        "Retired": False,
    }


class ReplayAdapter(BaseAdapter):
    """Replay an archived session on a virtual race clock.

    Parameters
    ----------
    config : ProxyConfig
        Supplies the session key, speed, tick interval and clock limits.
    api : OpenF1Api
        Unauthenticated REST access.
    on_signal : callable, optional
        Unused; replay is the terminal source and never signals.
    clock : callable
        Monotonic seconds; injectable for tests.
    """

    mode = SourceMode.REPLAY

    def __init__(
        self,
        config: ProxyConfig,
        api: OpenF1Api,
        *,
        on_signal: SignalCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, on_signal=on_signal)
        self._api = api
        self._clock = clock
        self._book = TimingBook()
        self._session: Session | None = None
        self._drivers: list[Driver] = []
        self._stints: dict[str, list[Stint]] = {}
        self._race_start: datetime | None = None
        self._started_at = 0.0
        self._window_end: datetime | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def race_start(self) -> datetime | None:
        return self._race_start

    @property
    def window_end(self) -> datetime | None:
        return self._window_end

    def race_elapsed(self) -> float:
        """Seconds of race time since the virtual green flag."""
        return (self._clock() - self._started_at) * self._config.replay_speed

    def race_time(self) -> datetime:
        if self._race_start is None:
            raise RuntimeError("Replay has not been started")
        return self._race_start + timedelta(seconds=self.race_elapsed())

    async def _open(self) -> bool:
        key = self._config.replay_session_key
        self._logger.info("Loading replay session %s", key)
        session, drivers, grid_reports = await asyncio.gather(
            self._api.session(key),
            self._api.drivers(key),
            self._api.positions(key, extra=[("position", "<=", 20)]),
        )
        if session is None:
            raise ReplayDataError(f"Replay session {key} not found")
        if not drivers:
            raise ReplayDataError(f"Replay session {key} has no drivers")
        self._logger.info("Replay session: %s - %s, %d drivers", session.location, session.display_name, len(drivers))

        leaders = await self._api.positions(key, extra=[("position", "=", 1)])
        first_report = min((p.date for p in leaders), default=None)
        if first_report is None:
            raise ReplayDataError("Could not determine race start time")
        stints = await self._api.stints(key)
        if not self._running:
            return False

        self._session = session
        self._drivers = drivers
        self._stints = {}
        for stint in sorted(stints, key=lambda s: s.stint_number):
            if stint.driver:
                self._stints.setdefault(stint.driver, []).append(stint)
        self._race_start = first_report + timedelta(seconds=self._config.replay_formation_skip)
        self._logger.info("Skipping to green flag at %s", to_iso(self._race_start))

        grid = starting_grid(grid_reports)
        self._logger.info("Starting grid loaded: %d drivers", len(grid))
        self._publish(self._initial_state(session, drivers, grid), initial=True)

        self._started_at = self._clock()
        self._window_end = self._race_start
        self._logger.info(
            "Replaying at %.1fx, a tick every %.1fs", self._config.replay_speed, self._config.replay_tick_interval
        )
        await self.tick()
        self._scheduler.every(
            self._config.replay_tick_interval,
            self.tick,
            name="replay-tick",
            delay=self._config.replay_tick_interval,
        )
        return True

    async def _close(self) -> None:
        self._window_end = None

    def _initial_state(self, session: Session, drivers: list[Driver], grid: dict[str, int]) -> dict[str, Any]:
        self._book = TimingBook(known_drivers={str(d.driver_number) for d in drivers}, track_segments=True)
        self._book.current_lap = 1

        state = session_info(session, circuit_key=self._config.replay_circuit_key)
        state.update(
            {
                "LapCount": {"CurrentLap": 1, "TotalLaps": self._config.replay_total_laps},
                "TrackStatus": dict(ALL_CLEAR),
                "WeatherData": dict(DEFAULT_WEATHER),
                "ExtrapolatedClock": {
                    "Remaining": format_clock(self._config.replay_session_duration),
                    "Utc": to_iso(datetime.now(UTC)),
                    "Extrapolating": False,
                },
                "DriverList": {},
                "TimingData": {"Lines": {}},
                "TimingAppData": {"Lines": {}},
                "Position": {"Position": {}},
                "RaceControlMessages": {"Messages": []},
                "TeamRadio": {"Captures": []},
            }
        )
        for index, driver in enumerate(drivers):
            number = str(driver.driver_number)
            entry = driver_entry(driver)
            entry["TeamColour"] = entry["TeamColour"] or "FFFFFF"
            state["DriverList"][number] = entry
            state["TimingData"]["Lines"][number] = timing_line(grid.get(number, index + 1))
            state["TimingAppData"]["Lines"][number] = {"Stints": {}}
            first_stint = self._stints.get(number)
            if first_stint:
                deep_merge(state, self._book.apply_stint(first_stint[0]))
        return state

    def _stint_partial(self) -> dict[str, Any]:
        """Tyre changes for drivers whose lap count entered a new stint."""
        partial: dict[str, Any] = {}
        for number, stints in self._stints.items():
            entry = self._book.driver(number)
            on_lap = (entry.lap_number if entry is not None else 0) + 1
            current = [s for s in stints if s.lap_start is None or s.lap_start <= on_lap]
            if current:
                deep_merge(partial, self._book.apply_stint(current[-1]))
        return partial

    async def tick(self) -> None:
        """Advance the virtual clock and apply the records of the elapsed window."""
        since = self._window_end
        if since is None or not self._running:
            return
        until = self.race_time()
        if until <= since:
            return
        key = self._config.replay_session_key

        positions, intervals, laps, locations, race_control, team_radio = await asyncio.gather(
            self._api.positions(key, since, until),
            self._api.intervals(key, since, until),
            self._api.laps(key, since, until),
            self._api.locations(key, since, until),
            self._api.race_control(key, since, until),
            self._api.team_radio(key, since, until),
        )
        if not self._running:
            return

        elapsed = int((until - self._race_start).total_seconds()) if self._race_start else 0
        fetched = len(positions) + len(intervals) + len(laps) + len(locations) + len(race_control) + len(team_radio)
        if fetched:
            self._logger.info(
                "%d:%02d - Fetched: %d pos, %d int, %d laps, %d loc, %d rc, %d radio",
                elapsed // 60,
                elapsed % 60,
                len(positions),
                len(intervals),
                len(laps),
                len(locations),
                len(race_control),
                len(team_radio),
            )

        partial: dict[str, Any] = {}
        for record in latest_positions(positions):
            deep_merge(partial, self._book.apply_position(record))
        for record in latest_intervals(intervals):
            deep_merge(partial, self._book.apply_interval(record))
        for record in sorted(laps, key=lambda r: r.lap_number):
            deep_merge(partial, self._book.apply_lap(record))
        deep_merge(partial, self._stint_partial())
        deep_merge(partial, location_partial(locations))
        remaining = self._config.replay_session_duration - elapsed
        partial["ExtrapolatedClock"] = {
            "Remaining": format_clock(remaining),
            "Utc": to_iso(datetime.now(UTC)),
            "Extrapolating": remaining > 0,
        }
        self._publish(partial)
        self._publish(race_control_partial(self.state.get("RaceControlMessages"), race_control))
        self._publish(team_radio_partial(self.state.get("TeamRadio"), team_radio, drivers=self.state.get("DriverList")))
        self._window_end = until
