"""Per-driver timing scratch and timing-line derivation.

The pub/sub client, the REST poller and the replay simulator receive one
record per discipline (position, interval, lap, stint, car telemetry).
:class:`TimingBook` keeps the latest value of each discipline per driver and
turns every record into a partial update touching only that discipline's
timing-line fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pyf1proxy._constants import MAX_VALID_LAP_SECONDS
from pyf1proxy.ingestion.normalize import (
    format_gap,
    format_lap_time,
    format_sector_time,
    safe_float,
    segment_statuses,
    to_iso,
)
from pyf1proxy.models.openf1 import CarData, Interval, Lap, Position, Stint

# Native feed CarData channel numbers.
_CAR_CHANNELS: tuple[tuple[str, str], ...] = (
    ("0", "rpm"),
    ("2", "speed"),
    ("3", "n_gear"),
    ("4", "throttle"),
    ("5", "brake"),
    ("45", "drs"),
)


@dataclass
class DriverTiming:
    """Latest known values for one driver."""

    position: int | None = None
    gap_to_leader: float | str | None = None
    interval: float | str | None = None
    lap_number: int = 0
    best_lap: float | None = None
    best_sectors: list[float | None] = field(default_factory=lambda: [None, None, None])
    stint_number: int = 0
    compound: str | None = None
    tyre_age: int | None = None
    telemetry: dict[str, Any] = field(default_factory=dict)
    last_lap: tuple[Any, ...] | None = None


def _lines(number: str, fields: dict[str, Any]) -> dict[str, Any]:
    return {"TimingData": {"Lines": {number: fields}}}


class TimingBook:
    """Scratch timing state for every driver of one session.

    Parameters
    ----------
    known_drivers : set of str, optional
        When given, records for other racing numbers are ignored.
    track_segments : bool
        Include mini-sector statuses in sector updates.
    """

    def __init__(self, *, known_drivers: set[str] | None = None, track_segments: bool = False) -> None:
        self._drivers: dict[str, DriverTiming] = {}
        self._known = known_drivers
        self._track_segments = track_segments
        self.current_lap = 0
        self.overall_best_lap: float | None = None
        self.overall_best_sectors: list[float | None] = [None, None, None]

    def driver(self, number: str) -> DriverTiming | None:
        return self._drivers.get(number)

    def _entry(self, number: str | None) -> DriverTiming | None:
        if number is None:
            return None
        if self._known is not None and number not in self._known:
            return None
        return self._drivers.setdefault(number, DriverTiming())

    def apply_position(self, record: Position) -> dict[str, Any]:
        number = record.driver
        entry = self._entry(number)
        if entry is None or number is None:
            return {}
        entry.position = record.position
        return _lines(number, {"Position": str(record.position), "Line": record.position})

    def apply_interval(self, record: Interval) -> dict[str, Any]:
        number = record.driver
        entry = self._entry(number)
        if entry is None or number is None:
            return {}
        entry.gap_to_leader = record.gap_to_leader
        entry.interval = record.interval
        gap = format_gap(record.gap_to_leader)
        interval = format_gap(record.interval) if gap else ""
        return _lines(number, {"GapToLeader": gap, "IntervalToPositionAhead": {"Value": interval}})

    def apply_lap(self, record: Lap) -> dict[str, Any]:
        """Lap, sector and best-time fields for one lap record.

        ``NumberOfLaps`` only moves forward: a record for an older lap than
        the one already seen updates personal bests at most.  A record that
        repeats the last one applied (overlapping poll windows) is a no-op.
        """
        number = record.driver
        entry = self._entry(number)
        if entry is None or number is None:
            return {}
        signature = (record.lap_number, record.lap_duration, *record.sector_durations)
        if signature == entry.last_lap:
            return {}

        fields: dict[str, Any] = {}
        lap_seconds = safe_float(record.lap_duration)
        personal_best = False
        overall_best = False
        if lap_seconds and lap_seconds < MAX_VALID_LAP_SECONDS and not record.is_pit_out_lap:
            if entry.best_lap is None or lap_seconds <= entry.best_lap:
                entry.best_lap = lap_seconds
                personal_best = True
                fields["BestLapTime"] = {"Value": format_lap_time(lap_seconds)}
            if self.overall_best_lap is None or lap_seconds <= self.overall_best_lap:
                self.overall_best_lap = lap_seconds
                overall_best = True

        if record.lap_number < entry.lap_number:
            return _lines(number, fields) if fields else {}

        entry.lap_number = record.lap_number
        entry.last_lap = signature
        fields["NumberOfLaps"] = record.lap_number
        last_lap = format_lap_time(lap_seconds)
        if last_lap is not None:
            fields["LastLapTime"] = {
                "Value": last_lap,
                "PersonalFastest": personal_best,
                "OverallFastest": overall_best,
            }
        sectors = self._sector_fields(entry, record)
        if sectors:
            fields["Sectors"] = sectors
        fields["PitOut"] = record.is_pit_out_lap
        fields["InPit"] = False

        partial = _lines(number, fields)
        if record.lap_number > self.current_lap:
            self.current_lap = record.lap_number
            partial["LapCount"] = {"CurrentLap": record.lap_number}
        return partial

    def _sector_fields(self, entry: DriverTiming, record: Lap) -> dict[str, Any]:
        sectors: dict[str, Any] = {}
        for index, (duration, segments) in enumerate(zip(record.sector_durations, record.sector_segments, strict=True)):
            value = format_sector_time(duration)
            if value is None or duration is None:
                continue
            best = entry.best_sectors[index]
            personal = best is None or duration <= best
            if personal:
                entry.best_sectors[index] = duration
            overall_best = self.overall_best_sectors[index]
            overall = overall_best is None or duration <= overall_best
            if overall:
                self.overall_best_sectors[index] = duration
            sector: dict[str, Any] = {"Value": value, "PersonalFastest": personal, "OverallFastest": overall}
            if self._track_segments:
                sector["Segments"] = segment_statuses(segments)
            sectors[str(index)] = sector
        return sectors

    def apply_stint(self, record: Stint) -> dict[str, Any]:
        """Tyre fields for the driver's current stint (older stints are ignored)."""
        number = record.driver
        entry = self._entry(number)
        if entry is None or number is None or record.stint_number < entry.stint_number:
            return {}
        if (record.stint_number, record.compound, record.tyre_age_at_start) == (
            entry.stint_number,
            entry.compound,
            entry.tyre_age,
        ):
            return {}
        entry.stint_number = record.stint_number
        entry.compound = record.compound
        entry.tyre_age = record.tyre_age_at_start
        stint: dict[str, Any] = {
            "Compound": record.compound or "UNKNOWN",
            "TotalLaps": record.tyre_age_at_start or 0,
            "New": "true" if not record.tyre_age_at_start else "false",
        }
        if record.lap_start is not None:
            stint["StartLaps"] = record.lap_start
        partial = _lines(number, {"NumberOfPitStops": max(0, record.stint_number - 1)})
        partial["TimingAppData"] = {"Lines": {number: {"Stints": {"0": stint}}}}
        return partial

    def apply_car_data(self, record: CarData) -> dict[str, Any]:
        """Latest telemetry sample per car, keyed by native ``CarData`` channel numbers."""
        number = record.driver
        entry = self._entry(number)
        if entry is None or number is None:
            return {}
        channels = {
            channel: getattr(record, name) for channel, name in _CAR_CHANNELS if getattr(record, name) is not None
        }
        entry.telemetry = dict(channels)
        return {"CarData": {"Cars": {number: {"Utc": to_iso(record.date), "Channels": channels}}}}
