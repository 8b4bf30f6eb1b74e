"""OpenF1 record to partial-update conversion.

Shared by the pub/sub client, the REST poller and the replay simulator.
Timing-line disciplines go through :class:`pyf1proxy.ingestion.timing.TimingBook`;
this module covers the remaining domains.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from pyf1proxy.ingestion.normalize import latest_by
from pyf1proxy.models.openf1 import Driver, Interval, Lap, Location, Position, Session, Stint, Weather


def session_info(session: Session, *, circuit_key: int | None = None) -> dict[str, Any]:
    meeting: dict[str, Any] = {
        "Name": session.display_meeting,
        "Circuit": {"ShortName": session.display_circuit},
    }
    key = circuit_key if circuit_key is not None else session.circuit_key
    if key is not None:
        meeting["Circuit"]["Key"] = key
    if session.country_name or session.country_code:
        meeting["Country"] = {"Name": session.country_name, "Code": session.country_code}
    info: dict[str, Any] = {"Meeting": meeting, "Name": session.display_name}
    if session.session_type:
        info["Type"] = session.session_type
    return {"SessionInfo": info}


def driver_entry(driver: Driver) -> dict[str, Any]:
    number = str(driver.driver_number)
    return {
        "RacingNumber": number,
        "Tla": driver.name_acronym,
        "FullName": driver.full_name,
        "TeamName": driver.team_name,
        "TeamColour": driver.team_colour,
    }


def driver_list(drivers: Iterable[Driver]) -> dict[str, Any]:
    entries = {str(d.driver_number): driver_entry(d) for d in drivers}
    return {"DriverList": entries} if entries else {}


def location_partial(records: Iterable[Location]) -> dict[str, Any]:
    """Track-map coordinates from the latest location sample per car."""
    latest = latest_by(records, key=lambda r: r.driver, order=lambda r: r.date)
    cars = {number: {"X": r.x, "Y": r.y} for number, r in latest.items()}
    return {"Position": {"Position": cars}} if cars else {}


def weather_partial(record: Weather) -> dict[str, Any]:
    def text(value: Any) -> str:
        return "" if value is None else str(value)

    return {
        "WeatherData": {
            "AirTemp": text(record.air_temperature),
            "Humidity": text(record.humidity),
            "Pressure": text(record.pressure),
            "Rainfall": "1" if record.rainfall else "0",
            "TrackTemp": text(record.track_temperature),
            "WindDirection": text(record.wind_direction),
            "WindSpeed": text(record.wind_speed),
        }
    }


def latest_positions(records: Iterable[Position]) -> list[Position]:
    return list(latest_by(records, key=lambda r: r.driver, order=lambda r: r.date).values())


def latest_intervals(records: Iterable[Interval]) -> list[Interval]:
    return list(latest_by(records, key=lambda r: r.driver, order=lambda r: r.date).values())


def latest_laps(records: Iterable[Lap]) -> list[Lap]:
    return list(latest_by(records, key=lambda r: r.driver, order=lambda r: r.lap_number).values())


def latest_stints(records: Iterable[Stint]) -> list[Stint]:
    return list(latest_by(records, key=lambda r: r.driver, order=lambda r: r.stint_number).values())
