"""Normalization helpers.

Centralizes defensive parsing and the display formats of the live timing
document (lap and sector times, gaps, clocks, segment statuses).
"""

from __future__ import annotations

import math
from collections.abc import Callable, Hashable, Iterable
from datetime import UTC, datetime
from typing import Any, TypeVar

from pyf1proxy._constants import MAX_LAP_SECONDS, MAX_SECTOR_SECONDS

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

# Mini-sector status codes reported in OpenF1 lap records.
SEGMENT_STATUSES: dict[int, str] = {
    2048: "Completed",
    2049: "PersonalFastest",
    2051: "OverallFastest",
}


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def format_lap_time(seconds: Any, *, limit: float = MAX_LAP_SECONDS) -> str | None:
    """Format a lap duration as ``M:SS.sss``.

    Missing, zero and implausibly long durations (above *limit*) yield ``None``.
    """
    value = safe_float(seconds)
    if not value or value > limit:
        return None
    minutes = int(value // 60)
    return f"{minutes}:{value - minutes * 60:06.3f}"


def format_sector_time(seconds: Any, *, limit: float = MAX_SECTOR_SECONDS) -> str | None:
    value = safe_float(seconds)
    if not value or value > limit:
        return None
    return f"{value:.3f}"


def format_gap(value: Any) -> str:
    """Format a gap or interval.

    Numbers become ``+S.sss``; the leader (``0`` or missing) is ``""``; text
    values such as ``+1 LAP`` pass through.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    number = safe_float(value)
    if not number:
        return ""
    return f"+{number:.3f}"


def format_clock(seconds: float) -> str:
    """Format a duration as ``H:MM:SS`` (negative values clamp to zero)."""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


def segment_status(value: Any) -> str | None:
    code = safe_int(value)
    if code is None:
        return None
    return SEGMENT_STATUSES.get(code)


def segment_statuses(values: Iterable[Any]) -> list[str]:
    """Map mini-sector codes to status names, dropping unknown codes."""
    return [status for status in (segment_status(v) for v in values) if status]


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def to_iso(value: datetime) -> str:
    """Render *value* as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (UTC)."""
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return aware.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def latest_by(
    records: Iterable[T],
    key: Callable[[T], K | None],
    order: Callable[[T], Any],
) -> dict[K, T]:
    """Keep only the most recent record per key.

    *order* ranks records (timestamp, lap number, ...); on ties the record
    seen last wins.  Records whose key or order is ``None`` are skipped.
    """
    latest: dict[K, T] = {}
    ranks: dict[K, Any] = {}
    for record in records:
        group = key(record)
        rank = order(record)
        if group is None or rank is None:
            continue
        if group not in latest or rank >= ranks[group]:
            latest[group] = record
            ranks[group] = rank
    return latest
