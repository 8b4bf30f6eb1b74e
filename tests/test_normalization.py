from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta, timezone

from pyf1proxy.ingestion.normalize import (
    format_clock,
    format_gap,
    format_lap_time,
    format_sector_time,
    latest_by,
    parse_datetime,
    safe_float,
    safe_int,
    segment_statuses,
    to_iso,
)


def test_lap_time_format() -> None:
    assert format_lap_time(65.123) == "1:05.123"
    assert format_lap_time(105.5) == "1:45.500"
    assert format_lap_time(59.9) == "0:59.900"


def test_implausible_lap_times_are_hidden() -> None:
    assert format_lap_time(None) is None
    assert format_lap_time(0) is None
    assert format_lap_time(301.0) is None


def test_sector_time_format() -> None:
    assert format_sector_time(31.4) == "31.400"
    assert format_sector_time(61.0) is None
    assert format_sector_time(None) is None


def test_gap_format() -> None:
    assert format_gap(1.2346) == "+1.235"
    assert format_gap(12.5) == "+12.500"
    assert format_gap(0) == ""
    assert format_gap(None) == ""
    assert format_gap("+1 LAP") == "+1 LAP"


def test_clock_format() -> None:
    assert format_clock(7200) == "2:00:00"
    assert format_clock(3599.9) == "0:59:59"
    assert format_clock(-5) == "0:00:00"


def test_segment_statuses_drop_unknown_codes() -> None:
    assert segment_statuses([2048, 2049, 2051, 2064, None, 0]) == [
        "Completed",
        "PersonalFastest",
        "OverallFastest",
    ]


def test_safe_parsers() -> None:
    assert safe_float("1.5") == 1.5
    assert safe_float("--") is None
    assert safe_float(math.nan) is None
    assert safe_float("abc") is None
    assert safe_int("7.9") == 7
    assert safe_int(None) is None


def test_datetime_round_trip_uses_utc_and_milliseconds() -> None:
    parsed = parse_datetime("2024-09-15T11:03:12.345678+00:00")
    assert parsed == datetime(2024, 9, 15, 11, 3, 12, 345678, tzinfo=UTC)
    assert to_iso(parsed) == "2024-09-15T11:03:12.345Z"

    local = datetime(2024, 9, 15, 15, 0, tzinfo=timezone(timedelta(hours=4)))
    assert to_iso(local) == "2024-09-15T11:00:00.000Z"
    assert parse_datetime("not a date") is None
    assert parse_datetime("2024-09-15T11:00:00").tzinfo is UTC


def test_latest_by_keeps_newest_record_per_key() -> None:
    records = [
        {"driver": "1", "date": 3, "value": "c"},
        {"driver": "1", "date": 1, "value": "a"},
        {"driver": "44", "date": 2, "value": "b"},
        {"driver": None, "date": 9, "value": "skipped"},
    ]
    latest = latest_by(records, key=lambda r: r["driver"], order=lambda r: r["date"])
    assert {k: v["value"] for k, v in latest.items()} == {"1": "c", "44": "b"}


def test_latest_by_prefers_last_seen_on_ties() -> None:
    records = [{"k": "1", "n": 5, "v": "first"}, {"k": "1", "n": 5, "v": "second"}]
    latest = latest_by(records, key=lambda r: r["k"], order=lambda r: r["n"])
    assert latest["1"]["v"] == "second"
