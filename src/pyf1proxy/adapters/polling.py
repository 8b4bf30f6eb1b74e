"""REST poller.

Discovers the current session, then polls the per-discipline endpoints for a
sliding window (``now - overlap`` to now) at a fixed cadence.  Within each
discipline only the most recent record per driver is applied, so records
arriving out of order never overwrite newer data.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from pyf1proxy._api.openf1 import OpenF1Api
from pyf1proxy.adapters.base import BaseAdapter, SignalCallback
from pyf1proxy.config import ProxyConfig
from pyf1proxy.ingestion.messages import ALL_CLEAR, race_control_partial, team_radio_partial
from pyf1proxy.ingestion.openf1 import (
    driver_list,
    latest_intervals,
    latest_laps,
    latest_positions,
    latest_stints,
    location_partial,
    session_info,
)
from pyf1proxy.ingestion.timing import TimingBook
from pyf1proxy.models.openf1 import Session
from pyf1proxy.state.events import SourceMode
from pyf1proxy.state.store import deep_merge


class PollingAdapter(BaseAdapter):
    mode = SourceMode.POLLING

    def __init__(
        self,
        config: ProxyConfig,
        api: OpenF1Api,
        *,
        on_signal: SignalCallback | None = None,
    ) -> None:
        super().__init__(config, on_signal=on_signal)
        self._api = api
        self._session: Session | None = None
        self._book = TimingBook()
        self._last_poll: datetime | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def last_poll(self) -> datetime | None:
        return self._last_poll

    async def _open(self) -> bool:
        self._logger.info("Looking for a live session")
        session = await self._api.latest_session()
        if session is None:
            self._logger.info("No active session found")
            return False
        if not self._running:
            return False
        self._session = session
        self._book = TimingBook()
        self._last_poll = None
        self._logger.info(
            "Found session %s at %s (key %s)", session.display_name, session.location, session.session_key
        )

        drivers, race_control, team_radio = await asyncio.gather(
            self._api.drivers(session.session_key),
            self._api.race_control(session.session_key),
            self._api.team_radio(session.session_key),
        )
        self._logger.info(
            "Loaded %d drivers, %d race control messages, %d team radios",
            len(drivers),
            len(race_control),
            len(team_radio),
        )
        partial = session_info(session)
        partial.update(driver_list(drivers))
        if not self.state.get("TrackStatus"):
            partial["TrackStatus"] = dict(ALL_CLEAR)
        self._publish(partial)
        self._publish(race_control_partial(self.state.get("RaceControlMessages"), race_control))
        self._publish(team_radio_partial(self.state.get("TeamRadio"), team_radio, drivers=self.state.get("DriverList")))

        await self.poll()
        self._logger.info("Polling every %.1fs", self._config.poll_interval)
        self._scheduler.every(self._config.poll_interval, self.poll, name="poll", delay=self._config.poll_interval)
        return True

    async def poll(self, *, now: datetime | None = None) -> None:
        """Fetch and apply one window of data."""
        session = self._session
        if session is None or not self._running:
            return
        current = now or datetime.now(UTC)
        since = current - timedelta(seconds=self._config.poll_overlap)
        key = session.session_key

        positions, intervals, laps, locations, race_control, team_radio, stints = await asyncio.gather(
            self._api.positions(key, since),
            self._api.intervals(key, since),
            self._api.laps(key, since),
            self._api.locations(key, since),
            self._api.race_control(key, since),
            self._api.team_radio(key, since),
            self._api.stints(key),
        )
        if not self._running:
            return

        partial: dict[str, Any] = {}
        for record in latest_positions(positions):
            deep_merge(partial, self._book.apply_position(record))
        for record in latest_intervals(intervals):
            deep_merge(partial, self._book.apply_interval(record))
        for record in latest_laps(laps):
            deep_merge(partial, self._book.apply_lap(record))
        for record in latest_stints(stints):
            deep_merge(partial, self._book.apply_stint(record))
        deep_merge(partial, location_partial(locations))
        self._publish(partial)

        self._publish(race_control_partial(self.state.get("RaceControlMessages"), race_control))
        self._publish(team_radio_partial(self.state.get("TeamRadio"), team_radio, drivers=self.state.get("DriverList")))
        self._last_poll = current
