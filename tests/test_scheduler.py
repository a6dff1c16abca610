"""Unit tests for the pure stages of the slot pipeline."""

from datetime import date, time, timedelta

import pytest

from conftest import EASTERN, utc
from dental_api.errors import AmbiguousLocalTime, DataIntegrity
from dental_api.scheduler import (
    assemble_slots,
    effective_window,
    filter_candidates,
    parse_wall_time,
    to_instant,
)


class TestParseWallTime:
    def test_parses_hhmm(self):
        assert parse_wall_time("09:30") == time(9, 30)
        assert parse_wall_time("9:05") == time(9, 5)
        assert parse_wall_time("23:59") == time(23, 59)

    @pytest.mark.parametrize("value", ["24:00", "12:60", "9am", "", None, "12:3", "12-30"])
    def test_rejects_malformed(self, value):
        with pytest.raises(DataIntegrity):
            parse_wall_time(value, "schedule start")


class TestEffectiveWindow:
    def test_intersects(self):
        office = (time(9), time(17))
        assert effective_window(office, (time(8), time(12))) == (time(9), time(12))
        assert effective_window(office, (time(10), time(18))) == (time(10), time(17))
        assert effective_window(office, (time(10), time(11))) == (time(10), time(11))

    def test_disjoint_is_empty(self):
        assert effective_window((time(9), time(12)), (time(13), time(17))) is None

    def test_touching_is_empty(self):
        assert effective_window((time(9), time(12)), (time(12), time(17))) is None


class TestToInstant:
    def test_standard_time(self):
        assert to_instant(date(2030, 1, 7), time(9), EASTERN) == utc(2030, 1, 7, 14)

    def test_daylight_time(self):
        assert to_instant(date(2030, 7, 8), time(9), EASTERN) == utc(2030, 7, 8, 13)

    def test_skipped_time_lands_after_gap(self):
        # 2025-03-09 02:30 does not exist in New York; read as EST it is 03:30 EDT
        assert to_instant(date(2025, 3, 9), time(2, 30), EASTERN) == utc(2025, 3, 9, 7, 30)

    def test_repeated_time_takes_first_occurrence(self):
        # 2025-11-02 01:30 happens twice; the EDT one comes first
        assert to_instant(date(2025, 11, 2), time(1, 30), EASTERN) == utc(2025, 11, 2, 5, 30)

    @pytest.mark.parametrize(
        "day,wall",
        [(date(2025, 3, 9), time(2, 30)), (date(2025, 11, 2), time(1, 30))],
    )
    def test_strict_raises(self, day, wall):
        with pytest.raises(AmbiguousLocalTime):
            to_instant(day, wall, EASTERN, strict=True)

    def test_strict_allows_ordinary_times(self):
        assert to_instant(date(2025, 11, 2), time(9), EASTERN, strict=True) == utc(2025, 11, 2, 14)


class TestFilterCandidates:
    start = utc(2030, 1, 7, 9)
    end = utc(2030, 1, 7, 12)

    def starts(self, free):
        return [s.strftime("%H:%M") for s, _ in free]

    def test_steps_by_duration(self):
        free = filter_candidates(self.start, self.end, 60, [])
        assert self.starts(free) == ["09:00", "10:00", "11:00"]
        assert all(e - s == timedelta(minutes=60) for s, e in free)

    def test_drops_partial_trailing_slot(self):
        free = filter_candidates(self.start, self.end, 50, [])
        assert self.starts(free) == ["09:00", "09:50", "10:40"]
        assert free[-1][1] <= self.end

    def test_window_shorter_than_duration(self):
        assert filter_candidates(self.start, utc(2030, 1, 7, 9, 20), 30, []) == []

    def test_overlapping_appointment_excludes(self):
        booked = [(utc(2030, 1, 7, 10, 15), utc(2030, 1, 7, 10, 45))]
        free = filter_candidates(self.start, self.end, 30, booked)
        assert self.starts(free) == ["09:00", "09:30", "11:00", "11:30"]

    def test_back_to_back_is_not_a_conflict(self):
        booked = [(utc(2030, 1, 7, 10), utc(2030, 1, 7, 10, 30))]
        free = filter_candidates(self.start, self.end, 30, booked)
        assert "09:30" in self.starts(free)
        assert "10:30" in self.starts(free)
        assert "10:00" not in self.starts(free)

    def test_appointment_enclosing_candidate(self):
        booked = [(utc(2030, 1, 7, 8), utc(2030, 1, 7, 11))]
        free = filter_candidates(self.start, self.end, 30, booked)
        assert self.starts(free) == ["11:00", "11:30"]

    def test_break_excludes_contained_candidates(self):
        brk = (utc(2030, 1, 7, 10), utc(2030, 1, 7, 11))
        free = filter_candidates(self.start, self.end, 30, [], brk)
        assert self.starts(free) == ["09:00", "09:30", "11:00", "11:30"]

    def test_break_partial_overlap_is_kept(self):
        brk = (utc(2030, 1, 7, 12), utc(2030, 1, 7, 13))
        free = filter_candidates(utc(2030, 1, 7, 11, 45), utc(2030, 1, 7, 13, 15), 30, [], brk)
        assert self.starts(free) == ["11:45", "12:45"]

    def test_non_positive_duration(self):
        with pytest.raises(DataIntegrity):
            filter_candidates(self.start, self.end, 0, [])


class TestAssembleSlots:
    def test_orders_by_start_then_name(self):
        slots = [
            {"start_time": utc(2030, 1, 7, 15), "practitioner_name": "Alice", "practitioner_id": 1},
            {"start_time": utc(2030, 1, 7, 14), "practitioner_name": "Bob", "practitioner_id": 2},
            {"start_time": utc(2030, 1, 7, 14), "practitioner_name": "Alice", "practitioner_id": 1},
        ]
        ordered = assemble_slots(slots)
        assert [(s["start_time"].hour, s["practitioner_name"]) for s in ordered] == [
            (14, "Alice"),
            (14, "Bob"),
            (15, "Alice"),
        ]

    def test_same_name_falls_back_to_id(self):
        slots = [
            {"start_time": utc(2030, 1, 7, 14), "practitioner_name": "Sam", "practitioner_id": 9},
            {"start_time": utc(2030, 1, 7, 14), "practitioner_name": "Sam", "practitioner_id": 3},
        ]
        assert [s["practitioner_id"] for s in assemble_slots(slots)] == [3, 9]
