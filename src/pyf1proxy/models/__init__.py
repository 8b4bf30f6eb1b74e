"""Data models for upstream records."""

from pyf1proxy.models._base import OpenF1Model
from pyf1proxy.models.openf1 import (
    CarData,
    Driver,
    Interval,
    Lap,
    Location,
    Position,
    RaceControl,
    Session,
    Stint,
    TeamRadio,
    Weather,
)
from pyf1proxy.models.token import AccessToken

__all__ = [
    "AccessToken",
    "CarData",
    "Driver",
    "Interval",
    "Lap",
    "Location",
    "OpenF1Model",
    "Position",
    "RaceControl",
    "Session",
    "Stint",
    "TeamRadio",
    "Weather",
]
