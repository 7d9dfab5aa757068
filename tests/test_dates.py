"""
Tests for safe date parsing and upcoming/past classification.
"""

import pytest
from datetime import date, datetime

from clinicresolve.dates import (
    INVALID_DATE,
    classify,
    is_valid,
    parse_date,
    split_upcoming_past,
    to_ymd,
    today,
)
from clinicresolve.models import SourceRecord


class TestParseDate:
    """Test parsing of the date shapes the backend produces."""

    @pytest.mark.parametrize("raw", [
        "2024-03-05",
        "2024/03/05",
        "2024.3.5",
        "05/03/2024",
        "5-3-2024",
        "2024-03-05T14:30:00",
        "2024-03-05T14:30:00.000",
        "March 5, 2024",
        "5 Mar 2024",
    ])
    def test_supported_forms(self, raw):
        """Every supported form should land on local midnight of the same day."""
        assert parse_date(raw) == datetime(2024, 3, 5)

    def test_time_is_truncated(self):
        """Two timestamps on the same day should compare equal."""
        assert parse_date("2024-03-05T00:00:01") == parse_date("2024-03-05T23:59:59")

    def test_month_first_order(self):
        """NN/NN/YYYY should be read month first when day_first is False."""
        assert parse_date("03/05/2024", day_first=False) == datetime(2024, 3, 5)
        assert parse_date("03/05/2024") == datetime(2024, 5, 3)

    def test_rfc2822(self):
        """Email-style dates are accepted."""
        parsed = parse_date("Tue, 05 Mar 2024 10:00:00 +0000")
        assert is_valid(parsed)
        assert parsed.hour == 0

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "   ",
        "not a date",
        "2024-13-45",
        "31/02/2024",
        "tomorrow",
        42,
        ["2024-03-05"],
    ])
    def test_invalid_inputs(self, raw):
        """Garbage should produce the sentinel and never raise."""
        assert parse_date(raw) is INVALID_DATE

    def test_date_and_datetime_objects(self):
        """Already-parsed values pass through truncated."""
        assert parse_date(date(2024, 3, 5)) == datetime(2024, 3, 5)
        assert parse_date(datetime(2024, 3, 5, 18, 45)) == datetime(2024, 3, 5)

    def test_sentinel_is_falsy(self):
        """The sentinel should behave as an explicit 'no date'."""
        assert not INVALID_DATE
        assert not is_valid(INVALID_DATE)
        assert parse_date(INVALID_DATE) is INVALID_DATE
        assert to_ymd(INVALID_DATE) == ""


class TestClassify:
    """Test upcoming/past classification."""

    def test_today_is_upcoming(self):
        """An appointment dated exactly today should be upcoming."""
        assert classify(today()) == "upcoming"
        assert classify(to_ymd(today())) == "upcoming"

    def test_yesterday_is_past(self):
        """A day before the reference should be past."""
        ref = datetime(2024, 3, 5)
        assert classify("2024-03-04", ref) == "past"
        assert classify("2024-03-05", ref) == "upcoming"
        assert classify("2024-03-06", ref) == "upcoming"

    def test_unparseable_is_unknown(self):
        """Invalid dates are never classified past or upcoming."""
        assert classify("soon", datetime(2024, 3, 5)) == "unknown"


def _appointment(id_, day, time_=None):
    raw = {"_id": id_, "appointment_date": day}
    if time_:
        raw["appointment_time"] = time_
    return SourceRecord(
        id=id_,
        source="appointment",
        type="Consultation",
        status="Scheduled",
        priority="-",
        actor_name="Unknown",
        timestamp=parse_date(day),
        raw=raw,
    )


class TestSplitUpcomingPast:
    """Test splitting and ordering of appointment records."""

    def test_split_and_order(self):
        """Upcoming soonest first by date then time, past most recent first."""
        ref = datetime(2024, 3, 5)
        records = [
            _appointment("a", "2024-03-07"),
            _appointment("b", "2024-03-05", "15:00"),
            _appointment("c", "2024-03-01"),
            _appointment("d", "2024-03-05", "09:30"),
            _appointment("e", "2024-02-20"),
            _appointment("f", "someday"),
        ]

        upcoming, past, undated = split_upcoming_past(records, ref)

        assert [r.id for r in upcoming] == ["d", "b", "a"]
        assert [r.id for r in past] == ["c", "e"]
        assert undated == 1
