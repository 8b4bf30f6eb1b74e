from __future__ import annotations

from datetime import UTC, datetime

from pyf1proxy.ingestion.timing import TimingBook
from pyf1proxy.models.openf1 import CarData, Interval, Lap, Position, Stint
from pyf1proxy.state.store import StateStore

_DATE = datetime(2024, 9, 15, 11, 0, tzinfo=UTC)


def _lap(number: int, lap_number: int, duration: float | None = None, **fields) -> Lap:
    return Lap.model_validate(
        {"driver_number": number, "lap_number": lap_number, "lap_duration": duration, **fields}
    )


def _line(partial: dict, number: str) -> dict:
    return partial["TimingData"]["Lines"][number]


def test_older_lap_never_lowers_lap_count() -> None:
    book = TimingBook()
    store = StateStore()
    store.merge(book.apply_lap(_lap(16, 10, 105.2)))
    store.merge(book.apply_lap(_lap(16, 9, 106.0)))
    assert store.get("TimingData")["Lines"]["16"]["NumberOfLaps"] == 10
    assert store.get("LapCount") == {"CurrentLap": 10}


def test_older_lap_can_still_improve_personal_best() -> None:
    book = TimingBook()
    book.apply_lap(_lap(16, 10, 105.2))
    partial = book.apply_lap(_lap(16, 9, 104.9))
    assert _line(partial, "16") == {"BestLapTime": {"Value": "1:44.900"}}


def test_lap_fields_and_best_flags() -> None:
    book = TimingBook()
    first = _line(book.apply_lap(_lap(1, 5, 105.0, duration_sector_1=30.0)), "1")
    assert first["LastLapTime"] == {"Value": "1:45.000", "PersonalFastest": True, "OverallFastest": True}
    assert first["BestLapTime"] == {"Value": "1:45.000"}
    assert first["Sectors"]["0"] == {"Value": "30.000", "PersonalFastest": True, "OverallFastest": True}
    assert first["NumberOfLaps"] == 5
    assert first["InPit"] is False

    other = _line(book.apply_lap(_lap(44, 5, 105.5, duration_sector_1=29.5)), "44")
    assert other["LastLapTime"]["PersonalFastest"] is True
    assert other["LastLapTime"]["OverallFastest"] is False
    assert other["Sectors"]["0"]["OverallFastest"] is True

    slower = _line(book.apply_lap(_lap(1, 6, 106.0)), "1")
    assert slower["LastLapTime"] == {"Value": "1:46.000", "PersonalFastest": False, "OverallFastest": False}
    assert "BestLapTime" not in slower


def test_pit_out_and_slow_laps_are_not_bests() -> None:
    book = TimingBook()
    pit_out = _line(book.apply_lap(_lap(1, 2, 120.0, is_pit_out_lap=True)), "1")
    assert "BestLapTime" not in pit_out
    assert pit_out["PitOut"] is True

    red_flag = _line(book.apply_lap(_lap(1, 3, 280.0)), "1")
    assert red_flag["LastLapTime"]["Value"] == "4:40.000"
    assert "BestLapTime" not in red_flag


def test_repeated_lap_record_is_ignored() -> None:
    book = TimingBook()
    record = _lap(1, 5, 105.0, duration_sector_1=30.0)
    assert book.apply_lap(record)
    assert book.apply_lap(record) == {}


def test_segments_only_when_tracked() -> None:
    record = _lap(1, 3, 105.0, duration_sector_2=40.1, segments_sector_2=[2048, 2051, 2064])
    plain = _line(TimingBook().apply_lap(record), "1")
    assert "Segments" not in plain["Sectors"]["1"]

    tracked = _line(TimingBook(track_segments=True).apply_lap(record), "1")
    assert tracked["Sectors"]["1"]["Segments"] == ["Completed", "OverallFastest"]


def test_position_and_interval_touch_only_their_fields() -> None:
    book = TimingBook()
    position = book.apply_position(Position.model_validate({"date": _DATE, "driver_number": 4, "position": 2}))
    assert _line(position, "4") == {"Position": "2", "Line": 2}

    interval = book.apply_interval(
        Interval.model_validate({"date": _DATE, "driver_number": 4, "gap_to_leader": 3.5, "interval": 1.25})
    )
    assert _line(interval, "4") == {"GapToLeader": "+3.500", "IntervalToPositionAhead": {"Value": "+1.250"}}

    leader = book.apply_interval(Interval.model_validate({"date": _DATE, "driver_number": 1, "gap_to_leader": 0}))
    assert _line(leader, "1") == {"GapToLeader": "", "IntervalToPositionAhead": {"Value": ""}}


def test_unknown_drivers_are_ignored_when_roster_is_known() -> None:
    book = TimingBook(known_drivers={"1"})
    assert book.apply_position(Position.model_validate({"date": _DATE, "driver_number": 99, "position": 1})) == {}


def test_stint_fields_and_pit_stop_count() -> None:
    book = TimingBook()
    stint = Stint.model_validate(
        {"driver_number": 16, "stint_number": 2, "compound": "HARD", "tyre_age_at_start": 0, "lap_start": 16}
    )
    partial = book.apply_stint(stint)
    assert _line(partial, "16") == {"NumberOfPitStops": 1}
    assert partial["TimingAppData"]["Lines"]["16"]["Stints"] == {
        "0": {"Compound": "HARD", "TotalLaps": 0, "New": "true", "StartLaps": 16}
    }
    # Unchanged and older stints produce nothing.
    assert book.apply_stint(stint) == {}
    assert book.apply_stint(Stint.model_validate({"driver_number": 16, "stint_number": 1, "compound": "MEDIUM"})) == {}


def test_car_data_uses_channel_numbers_per_car() -> None:
    book = TimingBook()
    store = StateStore()
    store.merge(
        book.apply_car_data(
            CarData.model_validate({"date": _DATE, "driver_number": 1, "speed": 310, "rpm": 11000, "n_gear": 8})
        )
    )
    store.merge(book.apply_car_data(CarData.model_validate({"date": _DATE, "driver_number": 44, "speed": 300})))
    cars = store.get("CarData")["Cars"]
    assert cars["1"]["Channels"] == {"0": 11000, "2": 310, "3": 8}
    assert cars["44"]["Channels"] == {"2": 300}
    assert cars["1"]["Utc"] == "2024-09-15T11:00:00.000Z"
