"""Tests for timestamp normalization and date ranges."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from kanban.core.errors import ValidationError
from kanban.core.timeutil import DateRange, to_utc_naive, utcnow


class TestToUtcNaive:
    def test_utcnow_is_naive(self):
        assert utcnow().tzinfo is None

    def test_aware_converted_to_utc(self):
        moment = datetime(2024, 3, 1, 9, 0, tzinfo=timezone(timedelta(hours=7)))
        assert to_utc_naive(moment) == datetime(2024, 3, 1, 2, 0)

    def test_naive_read_in_given_timezone(self):
        tz = ZoneInfo("Asia/Jakarta")
        assert to_utc_naive(datetime(2024, 3, 1, 7, 0), tz) == datetime(2024, 3, 1, 0, 0)

    def test_naive_defaults_to_utc(self):
        assert to_utc_naive(datetime(2024, 3, 1, 7, 0)) == datetime(2024, 3, 1, 7, 0)

    def test_date_is_midnight(self):
        assert to_utc_naive(date(2024, 3, 1)) == datetime(2024, 3, 1)


class TestDateRange:
    def test_end_must_follow_start(self):
        with pytest.raises(ValidationError):
            DateRange(datetime(2024, 3, 2), datetime(2024, 3, 1))
        with pytest.raises(ValidationError):
            DateRange(datetime(2024, 3, 1), datetime(2024, 3, 1))

    def test_half_open(self):
        window = DateRange(datetime(2024, 3, 1), datetime(2024, 4, 1))
        assert window.contains(datetime(2024, 3, 1))
        assert not window.contains(datetime(2024, 4, 1))

    def test_month_in_utc(self):
        window = DateRange.for_month(2024, 2)
        assert window.start == datetime(2024, 2, 1)
        assert window.end == datetime(2024, 3, 1)

    def test_december_rolls_over(self):
        window = DateRange.for_month(2023, 12)
        assert window.end == datetime(2024, 1, 1)

    def test_month_in_reporting_timezone(self):
        window = DateRange.for_month(2024, 3, ZoneInfo("Asia/Jakarta"))
        assert window.start == datetime(2024, 2, 29, 17, 0)
        assert window.end == datetime(2024, 3, 31, 17, 0)

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_invalid_month(self, month):
        with pytest.raises(ValidationError) as exc_info:
            DateRange.for_month(2024, month)
        assert exc_info.value.details[0]["field"] == "month"

    def test_invalid_year(self):
        with pytest.raises(ValidationError):
            DateRange.for_month(0, 1)
