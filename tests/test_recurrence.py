"""Tests for reminder timestamp generation."""

import pytest
from datetime import datetime

from app.features.medications.models import ReminderFrequency
from app.features.medications.recurrence import OPEN_ENDED_CAPS, generate
from app.shared.exceptions import ValidationException


class TestOnce:

    def test_single_timestamp_at_start(self):
        start = datetime(2024, 1, 1, 10, 30)
        assert generate(start, None, ReminderFrequency.ONCE) == [start]

    def test_first_dose_time_overrides_clock(self):
        start = datetime(2024, 1, 1, 10, 30)
        times = generate(start, None, ReminderFrequency.ONCE, datetime(2000, 1, 1, 7, 15))
        assert times == [datetime(2024, 1, 1, 7, 15)]


class TestDaily:

    def test_bounded_daily_is_inclusive_of_end(self):
        start = datetime(2024, 1, 1, 8, 0)
        end = datetime(2024, 1, 5, 8, 0)
        times = generate(start, end, ReminderFrequency.DAILY)
        assert times == [datetime(2024, 1, d, 8, 0) for d in range(1, 6)]

    def test_open_ended_daily_is_capped(self):
        times = generate(datetime(2024, 1, 1, 8, 0), None, ReminderFrequency.DAILY)
        assert len(times) == 90
        assert times[-1] == datetime(2024, 3, 30, 8, 0)

    def test_every_timestamp_within_bounds(self):
        start = datetime(2024, 1, 1, 8, 0)
        end = datetime(2024, 1, 10, 7, 59)
        times = generate(start, end, ReminderFrequency.DAILY)
        assert all(start <= t <= end for t in times)
        assert len(times) == 9


class TestMultiDaily:

    def test_twice_daily_uses_fixed_clock_times(self):
        start = datetime(2024, 1, 1, 0, 0)
        end = datetime(2024, 1, 2, 23, 59)
        times = generate(start, end, ReminderFrequency.TWICE_DAILY)
        assert times == [
            datetime(2024, 1, 1, 9, 0),
            datetime(2024, 1, 1, 21, 0),
            datetime(2024, 1, 2, 9, 0),
            datetime(2024, 1, 2, 21, 0),
        ]

    def test_twice_daily_open_ended_produces_180(self):
        times = generate(datetime(2024, 1, 1), None, ReminderFrequency.TWICE_DAILY)
        assert len(times) == 180
        assert times == sorted(times)

    def test_three_times_daily_clock_times(self):
        times = generate(datetime(2024, 1, 1), datetime(2024, 1, 1, 23, 0), ReminderFrequency.THREE_TIMES_DAILY)
        assert [t.hour for t in times] == [8, 14, 20]

    def test_four_times_daily_stops_at_end(self):
        times = generate(datetime(2024, 1, 1), datetime(2024, 1, 2, 13, 0), ReminderFrequency.FOUR_TIMES_DAILY)
        assert len(times) == 6
        assert times[-1] == datetime(2024, 1, 2, 12, 0)

    @pytest.mark.parametrize("frequency", [
        ReminderFrequency.THREE_TIMES_DAILY,
        ReminderFrequency.FOUR_TIMES_DAILY,
    ])
    def test_open_ended_caps(self, frequency):
        times = generate(datetime(2024, 1, 1), None, frequency)
        assert len(times) == OPEN_ENDED_CAPS[frequency]


class TestWeeklyAndMonthly:

    def test_weekly_open_ended(self):
        times = generate(datetime(2024, 1, 1, 9, 0), None, ReminderFrequency.WEEKLY)
        assert len(times) == 52
        assert times[1] == datetime(2024, 1, 8, 9, 0)

    def test_monthly_clamps_to_month_end(self):
        times = generate(datetime(2024, 1, 31, 9, 0), datetime(2024, 4, 30, 9, 0), ReminderFrequency.MONTHLY)
        assert times == [
            datetime(2024, 1, 31, 9, 0),
            datetime(2024, 2, 29, 9, 0),
            datetime(2024, 3, 31, 9, 0),
            datetime(2024, 4, 30, 9, 0),
        ]

    def test_monthly_open_ended(self):
        times = generate(datetime(2024, 1, 15, 9, 0), None, ReminderFrequency.MONTHLY)
        assert len(times) == 12
        assert times[-1] == datetime(2024, 12, 15, 9, 0)


class TestEdgeCases:

    def test_as_needed_has_no_reminders(self):
        assert generate(datetime(2024, 1, 1), None, ReminderFrequency.AS_NEEDED) == []

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValidationException):
            generate(datetime(2024, 1, 2), datetime(2024, 1, 1), ReminderFrequency.DAILY)

    def test_unknown_frequency_is_rejected(self):
        with pytest.raises(ValidationException):
            generate(datetime(2024, 1, 1), None, "hourly")

    def test_accepts_frequency_value_string(self):
        times = generate(datetime(2024, 1, 1, 8, 0), datetime(2024, 1, 2, 8, 0), "daily")
        assert len(times) == 2
