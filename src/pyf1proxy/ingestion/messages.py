"""Race control and team radio message logs.

Both logs are append-only lists in the state document, deduplicated by a
natural key and bounded to the most recent entries.  Because lists are
replaced wholesale on merge, every helper here returns the *whole* bounded
list as part of its partial update.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pyf1proxy._constants import RACE_CONTROL_LIMIT, TEAM_RADIO_LIMIT
from pyf1proxy.ingestion.normalize import to_iso
from pyf1proxy.models.openf1 import RaceControl, TeamRadio

_logger = logging.getLogger(__name__)

ALL_CLEAR: dict[str, str] = {"Status": "1", "Message": "AllClear"}

_FLAG_STATUSES: dict[str, dict[str, str]] = {
    "GREEN": ALL_CLEAR,
    "YELLOW": {"Status": "2", "Message": "Yellow"},
    "DOUBLE YELLOW": {"Status": "2", "Message": "Yellow"},
    "RED": {"Status": "5", "Message": "Red"},
    "CHEQUERED": {"Status": "7", "Message": "Chequered"},
}
_VSC_DEPLOYED: dict[str, str] = {"Status": "6", "Message": "VSC Deployed"}
_SC_DEPLOYED: dict[str, str] = {"Status": "4", "Message": "SC Deployed"}


def race_control_entry(record: RaceControl) -> dict[str, Any]:
    return {
        "Utc": to_iso(record.date),
        "Category": record.category or "Other",
        "Message": record.message,
        "Flag": record.flag,
        "Scope": record.scope,
        "Sector": record.sector,
        "DriverNumber": record.driver_number,
        "LapNumber": record.lap_number,
    }


def team_radio_entry(record: TeamRadio) -> dict[str, Any]:
    return {
        "Utc": to_iso(record.date),
        "RacingNumber": str(record.driver_number),
        "Path": record.recording_url,
    }


def race_control_key(entry: Mapping[str, Any]) -> Hashable:
    return (entry.get("Utc"), entry.get("Message"))


def team_radio_key(entry: Mapping[str, Any]) -> Hashable:
    return entry.get("Path")


def existing_entries(domain: Any, field_name: str) -> list[dict[str, Any]]:
    """Read a message list out of a state domain.

    The native feed may deliver the list as an index-keyed mapping; both
    shapes are accepted.
    """
    if not isinstance(domain, Mapping):
        return []
    raw = domain.get(field_name)
    if isinstance(raw, Mapping):
        items = [raw[k] for k in sorted(raw, key=lambda k: int(k) if str(k).isdigit() else 0)]
    elif isinstance(raw, list):
        items = raw
    else:
        return []
    return [dict(item) for item in items if isinstance(item, Mapping)]


@dataclass
class AppendResult:
    entries: list[dict[str, Any]]
    added: list[dict[str, Any]] = field(default_factory=list)


def append_bounded(
    existing: Iterable[Mapping[str, Any]],
    new: Iterable[Mapping[str, Any]],
    *,
    key: Callable[[Mapping[str, Any]], Hashable],
    limit: int,
    order: Callable[[Mapping[str, Any]], Any] | None = None,
) -> AppendResult:
    """Append *new* entries not already present, keeping the newest *limit*.

    Without *order* eviction is FIFO.  With *order* the log is sorted by it
    (stable) before trimming, so a late batch of old entries cannot push out
    newer ones.  Entries evicted in the same call are not reported as added.
    """
    entries = [dict(e) for e in existing]
    seen = {key(e) for e in entries}
    added: list[dict[str, Any]] = []
    for entry in new:
        entry_key = key(entry)
        if entry_key in seen:
            continue
        seen.add(entry_key)
        entries.append(dict(entry))
        added.append(dict(entry))
    if order is not None:
        entries.sort(key=order)
    if len(entries) > limit:
        entries = entries[-limit:]
        kept = {key(e) for e in entries}
        added = [e for e in added if key(e) in kept]
    return AppendResult(entries=entries, added=added)


def utc_order(entry: Mapping[str, Any]) -> str:
    """Sort key for log entries; entries without a timestamp sort first."""
    return str(entry.get("Utc") or "")


def track_status_for(entry: Mapping[str, Any]) -> dict[str, str] | None:
    """Track status implied by one race control entry, if any."""
    status: dict[str, str] | None = None
    flag = entry.get("Flag")
    if isinstance(flag, str) and entry.get("Scope") == "Track":
        status = _FLAG_STATUSES.get(flag.upper())
    if entry.get("Category") == "SafetyCar":
        message = str(entry.get("Message") or "").upper()
        if "VIRTUAL SAFETY CAR" in message:
            status = _VSC_DEPLOYED
        elif "SAFETY CAR" in message:
            status = _SC_DEPLOYED
    return dict(status) if status else None


def derive_track_status(entries: Iterable[Mapping[str, Any]]) -> dict[str, str] | None:
    """Track status after processing *entries* in order (the last match wins)."""
    current: dict[str, str] | None = None
    for entry in entries:
        status = track_status_for(entry)
        if status is not None:
            current = status
    return current


def race_control_partial(
    current: Any,
    records: Iterable[RaceControl],
    *,
    limit: int = RACE_CONTROL_LIMIT,
) -> dict[str, Any]:
    """Partial update appending *records* to the race control log.

    *current* is the ``RaceControlMessages`` domain as it is in the store.
    Only newly added messages affect the track status.  Returns ``{}`` when
    nothing is new.
    """
    ordered = sorted(records, key=lambda r: r.date)
    result = append_bounded(
        existing_entries(current, "Messages"),
        (race_control_entry(r) for r in ordered),
        key=race_control_key,
        limit=limit,
        order=utc_order,
    )
    if not result.added:
        return {}
    for entry in result.added:
        _logger.info("Race control: %s", entry["Message"])
    partial: dict[str, Any] = {"RaceControlMessages": {"Messages": result.entries}}
    status = derive_track_status(result.added)
    if status is not None:
        partial["TrackStatus"] = status
    return partial


def team_radio_partial(
    current: Any,
    records: Iterable[TeamRadio],
    *,
    limit: int = TEAM_RADIO_LIMIT,
    drivers: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Partial update appending *records* to the team radio log."""
    ordered = sorted(records, key=lambda r: r.date)
    result = append_bounded(
        existing_entries(current, "Captures"),
        (team_radio_entry(r) for r in ordered),
        key=team_radio_key,
        limit=limit,
        order=utc_order,
    )
    if not result.added:
        return {}
    for entry in result.added:
        number = entry["RacingNumber"]
        driver = (drivers or {}).get(number)
        tla = driver.get("Tla") if isinstance(driver, Mapping) else None
        _logger.info("Team radio: %s", tla or number)
    return {"TeamRadio": {"Captures": result.entries}}
