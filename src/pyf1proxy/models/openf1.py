"""OpenF1 record models.

One model per REST endpoint / MQTT topic.  The same JSON objects are served
by ``https://api.openf1.org/v1/<endpoint>`` and published on ``v1/<endpoint>``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from pyf1proxy.models._base import OpenF1Model


class Session(OpenF1Model):
    session_key: int
    meeting_key: int | None = None
    session_name: str | None = None
    session_type: str | None = None
    meeting_name: str | None = None
    location: str | None = None
    country_name: str | None = None
    country_code: str | None = None
    circuit_key: int | None = None
    circuit_short_name: str | None = None
    date_start: datetime | None = None
    date_end: datetime | None = None
    year: int | None = None

    @property
    def display_meeting(self) -> str | None:
        return self.meeting_name or self.location

    @property
    def display_circuit(self) -> str | None:
        return self.circuit_short_name or self.location

    @property
    def display_name(self) -> str | None:
        return self.session_name or self.session_type


class Driver(OpenF1Model):
    driver_number: int
    name_acronym: str | None = None
    full_name: str | None = None
    broadcast_name: str | None = None
    team_name: str | None = None
    team_colour: str | None = None


class Position(OpenF1Model):
    date: datetime
    driver_number: int
    position: int


class Interval(OpenF1Model):
    """Gap and interval; either may be a number of seconds or a text such as ``+1 LAP``."""

    date: datetime
    driver_number: int
    gap_to_leader: float | str | None = None
    interval: float | str | None = None


class Lap(OpenF1Model):
    driver_number: int
    lap_number: int
    date_start: datetime | None = None
    lap_duration: float | None = None
    duration_sector_1: float | None = None
    duration_sector_2: float | None = None
    duration_sector_3: float | None = None
    segments_sector_1: list[int | None] = Field(default_factory=list)
    segments_sector_2: list[int | None] = Field(default_factory=list)
    segments_sector_3: list[int | None] = Field(default_factory=list)
    is_pit_out_lap: bool = False

    @property
    def sector_durations(self) -> tuple[float | None, float | None, float | None]:
        return (self.duration_sector_1, self.duration_sector_2, self.duration_sector_3)

    @property
    def sector_segments(self) -> tuple[list[int | None], list[int | None], list[int | None]]:
        return (self.segments_sector_1, self.segments_sector_2, self.segments_sector_3)


class Location(OpenF1Model):
    date: datetime
    driver_number: int
    x: float | None = None
    y: float | None = None
    z: float | None = None


class CarData(OpenF1Model):
    date: datetime
    driver_number: int
    speed: int | None = None
    rpm: int | None = None
    n_gear: int | None = None
    throttle: int | None = None
    brake: int | None = None
    drs: int | None = None


class RaceControl(OpenF1Model):
    date: datetime
    message: str
    category: str | None = None
    flag: str | None = None
    scope: str | None = None
    sector: int | None = None
    driver_number: int | None = None
    lap_number: int | None = None


class TeamRadio(OpenF1Model):
    date: datetime
    driver_number: int
    recording_url: str


class Weather(OpenF1Model):
    date: datetime | None = None
    air_temperature: float | None = None
    humidity: float | None = None
    pressure: float | None = None
    rainfall: float | None = None
    track_temperature: float | None = None
    wind_direction: int | None = None
    wind_speed: float | None = None


class Stint(OpenF1Model):
    driver_number: int
    stint_number: int
    compound: str | None = None
    tyre_age_at_start: int | None = None
    lap_start: int | None = None
    lap_end: int | None = None
