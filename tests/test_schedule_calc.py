"""Tests for next-run calculation."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from adpulse.services.schedule_calc import (
    calculate_next_run_at,
    normalize_weekdays,
    parse_time_of_day,
    parse_timezone_offset,
)


def sched(**kw):
    defaults = {"time": "09:00", "timezone": "Z", "frequency": "daily", "weekdays": []}
    defaults.update(kw)
    return SimpleNamespace(**defaults)


class TestParsing:
    def test_time_of_day(self):
        assert parse_time_of_day("18:30") == (18, 30)
        assert parse_time_of_day("7:05") == (7, 5)

    @pytest.mark.parametrize("value", [None, "", "9am", "25", "12:3"])
    def test_bad_time_defaults_to_nine(self, value):
        assert parse_time_of_day(value) == (9, 0)

    @pytest.mark.parametrize("value,expected", [
        ("Z", 0),
        ("utc", 0),
        ("+05:00", 300),
        ("-03:30", -210),
        ("+0530", 330),
        ("+3", 180),
        (None, 0),
    ])
    def test_timezone_offset(self, value, expected):
        assert parse_timezone_offset(value) == expected

    def test_bad_timezone_is_utc(self):
        assert parse_timezone_offset("Europe/Moscow") == 0

    def test_empty_weekdays_means_every_day(self):
        assert normalize_weekdays([]) == [0, 1, 2, 3, 4, 5, 6]
        assert normalize_weekdays(None) == [0, 1, 2, 3, 4, 5, 6]
        assert normalize_weekdays([3, 1, 1, "x"]) == [1, 3]


class TestDaily:
    def test_later_today_in_local_time(self):
        s = sched(time="09:00", timezone="+05:00")
        now = datetime(2024, 1, 1, 3, 30)  # 08:30 local
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 1, 4, 0)

    def test_rolls_over_to_tomorrow(self):
        s = sched(time="09:00", timezone="+05:00")
        now = datetime(2024, 1, 1, 5, 0)  # 10:00 local
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 2, 4, 0)

    def test_exactly_at_slot_moves_forward(self):
        s = sched(time="09:00", timezone="Z")
        now = datetime(2024, 1, 1, 9, 0)
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 2, 9, 0)

    def test_negative_offset_crossing_midnight(self):
        s = sched(time="22:00", timezone="-05:00")
        now = datetime(2024, 1, 1, 2, 0)  # 21:00 local on Dec 31
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 1, 3, 0)

    def test_malformed_fields_use_defaults(self):
        s = sched(time="oops", timezone="nowhere")
        now = datetime(2024, 1, 1, 8, 0)
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 1, 9, 0)


class TestWeekly:
    def test_monday_before_slot_is_same_day(self):
        s = sched(frequency="weekly", weekdays=[1], time="08:00", timezone="Z")
        now = datetime(2024, 1, 1, 7, 0)  # Monday
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 1, 8, 0)

    def test_tuesday_waits_for_next_monday(self):
        s = sched(frequency="weekly", weekdays=[1], time="08:00", timezone="Z")
        now = datetime(2024, 1, 2, 10, 0)  # Tuesday
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 8, 8, 0)

    def test_monday_after_slot_waits_a_full_week(self):
        s = sched(frequency="weekly", weekdays=[1], time="08:00", timezone="Z")
        now = datetime(2024, 1, 1, 8, 0)
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 8, 8, 0)

    def test_weekday_uses_local_calendar(self):
        # воскресенье 23:30 UTC = понедельник 02:30 в +03:00
        s = sched(frequency="weekly", weekdays=[1], time="09:00", timezone="+03:00")
        now = datetime(2023, 12, 31, 23, 30)
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 1, 6, 0)

    def test_picks_nearest_allowed_day(self):
        s = sched(frequency="weekly", weekdays=[5, 3], time="12:00", timezone="Z")
        now = datetime(2024, 1, 1, 12, 0)  # Monday
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 3, 12, 0)

    def test_empty_weekdays_behaves_daily(self):
        s = sched(frequency="weekly", weekdays=[], time="12:00", timezone="Z")
        now = datetime(2024, 1, 1, 13, 0)
        assert calculate_next_run_at(s, now) == datetime(2024, 1, 2, 12, 0)


class TestProperties:
    SCHEDULES = [
        sched(),
        sched(time="00:00", timezone="+14:00"),
        sched(time="23:59", timezone="-12:00"),
        sched(frequency="weekly", weekdays=[0], time="00:00", timezone="+05:30"),
        sched(frequency="weekly", weekdays=[6], time="23:59", timezone="-09:00"),
        sched(frequency="weekly", weekdays=[2, 4], time="bad", timezone="bad"),
    ]

    def test_always_strictly_after_now(self):
        start = datetime(2024, 2, 26, 0, 0)
        for s in self.SCHEDULES:
            for step in range(0, 7 * 24 * 60, 37):
                now = start + timedelta(minutes=step)
                assert calculate_next_run_at(s, now) > now

    def test_deterministic(self):
        now = datetime(2024, 3, 10, 17, 45)
        for s in self.SCHEDULES:
            assert calculate_next_run_at(s, now) == calculate_next_run_at(s, now)

    def test_does_not_mutate_schedule(self):
        s = sched(frequency="weekly", weekdays=[3, 1], time="08:00", timezone="+02:00")
        calculate_next_run_at(s, datetime(2024, 1, 1))
        assert s.weekdays == [3, 1]
        assert s.time == "08:00"

    def test_aware_now_is_treated_as_utc(self):
        from datetime import timezone
        s = sched(time="09:00", timezone="Z")
        aware = datetime(2024, 1, 1, 8, 0, tzinfo=timezone(timedelta(hours=3)))  # 05:00Z
        assert calculate_next_run_at(s, aware) == datetime(2024, 1, 1, 9, 0)
