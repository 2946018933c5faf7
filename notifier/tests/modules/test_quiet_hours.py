"""Tests for do-not-disturb window evaluation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from modules.notifications.quiet_hours import in_quiet_hours, quiet_hours_end
from shared.schemas.notifications import DoNotDisturb

UTC = timezone.utc


def _at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    # 2026-03-10 is a Tuesday
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


class TestInQuietHours:
    @pytest.mark.parametrize(
        "moment,expected",
        [
            (_at(23, 30), True),
            (_at(5, 30), True),
            (_at(12, 0), False),
            (_at(22, 0), True),
            (_at(6, 0), True),
            (_at(6, 1), False),
            (_at(21, 59), False),
        ],
    )
    def test_overnight_window(self, moment, expected):
        dnd = DoNotDisturb(enabled=True, start_time="22:00", end_time="06:00")
        assert in_quiet_hours(dnd, moment) is expected

    def test_same_day_window(self):
        dnd = DoNotDisturb(enabled=True, start_time="12:00", end_time="14:00")
        assert in_quiet_hours(dnd, _at(13, 0))
        assert not in_quiet_hours(dnd, _at(14, 1))

    def test_absent_or_disabled(self):
        assert not in_quiet_hours(None, _at(23, 30))
        dnd = DoNotDisturb(enabled=False, start_time="22:00", end_time="06:00")
        assert not in_quiet_hours(dnd, _at(23, 30))

    def test_missing_bounds_cover_whole_day(self):
        assert in_quiet_hours(DoNotDisturb(enabled=True), _at(12, 0))
        assert in_quiet_hours(DoNotDisturb(enabled=True, start_time="22:00"), _at(9, 0))

    def test_day_filter_uses_sunday_zero(self):
        weekend = DoNotDisturb(enabled=True, days=[0, 6])
        assert not in_quiet_hours(weekend, _at(12, 0, day=10))  # Tuesday
        assert in_quiet_hours(weekend, _at(12, 0, day=14))  # Saturday
        assert in_quiet_hours(weekend, _at(12, 0, day=15))  # Sunday

    def test_window_evaluated_in_user_timezone(self):
        # 21:30 UTC is 22:30 in Amsterdam (CET, before the March DST switch)
        dnd = DoNotDisturb(
            enabled=True, start_time="22:00", end_time="06:00", timezone="Europe/Amsterdam"
        )
        assert in_quiet_hours(dnd, _at(21, 30))
        assert not in_quiet_hours(DoNotDisturb(enabled=True, start_time="22:00", end_time="06:00"), _at(21, 30))

    def test_unknown_timezone_falls_back_to_given_zone(self):
        dnd = DoNotDisturb(
            enabled=True, start_time="22:00", end_time="06:00", timezone="Mars/Olympus_Mons"
        )
        assert in_quiet_hours(dnd, _at(23, 0))


class TestQuietHoursEnd:
    def test_end_plus_buffer_tomorrow_when_past(self):
        dnd = DoNotDisturb(enabled=True, start_time="22:00", end_time="06:00")
        assert quiet_hours_end(dnd, _at(23, 30)) == _at(6, 5, day=11)

    def test_end_plus_buffer_today_when_ahead(self):
        dnd = DoNotDisturb(enabled=True, start_time="22:00", end_time="06:00")
        assert quiet_hours_end(dnd, _at(5, 30)) == _at(6, 5)

    def test_fallback_without_end_time(self):
        dnd = DoNotDisturb(enabled=True)
        assert quiet_hours_end(dnd, _at(12, 0)) == _at(12, 0) + timedelta(hours=8)

    def test_fallback_and_buffer_are_configurable(self):
        dnd = DoNotDisturb(enabled=True, start_time="22:00", end_time="06:00")
        assert quiet_hours_end(dnd, _at(5, 0), resume_buffer_minutes=0) == _at(6, 0)
        assert quiet_hours_end(DoNotDisturb(enabled=True), _at(12, 0), fallback_hours=2) == _at(14, 0)

    def test_result_expressed_in_callers_zone(self):
        dnd = DoNotDisturb(
            enabled=True, start_time="22:00", end_time="06:00", timezone="Europe/Amsterdam"
        )
        result = quiet_hours_end(dnd, _at(23, 0))
        # 06:05 CET is 05:05 UTC
        assert result == _at(5, 5, day=11)
        assert result.tzinfo == UTC
