"""
Safe date parsing for heterogeneous backend date strings.

Every value is reduced to a naive local datetime at midnight so that
same-day comparisons are exact, or to the INVALID_DATE sentinel. Parsing
never raises.
"""

import re
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Tuple, Union


class InvalidDate:
    """Sentinel for a date that could not be parsed."""

    is_valid = False

    def __bool__(self):
        return False

    def __repr__(self):
        return "InvalidDate"

    def isoformat(self) -> str:
        return "Invalid Date"


INVALID_DATE = InvalidDate()

DateOrInvalid = Union[datetime, InvalidDate]

_YMD = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
_NN_NN_YYYY = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})$")

_NAMED_FORMATS = (
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)


def _midnight(year: int, month: int, day: int) -> DateOrInvalid:
    try:
        return datetime(year, month, day)
    except ValueError:
        return INVALID_DATE


def _truncate(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def is_valid(value: Any) -> bool:
    return isinstance(value, datetime)


def parse_date(value: Union[str, date, datetime, None], day_first: bool = True) -> DateOrInvalid:
    """Parse a date-like value to local midnight.

    Accepts YYYY-MM-DD, YYYY/MM/DD, YYYY.MM.DD, NN/NN/YYYY (day first unless
    ``day_first`` is False), ISO-8601 datetimes, RFC 2822 dates and
    month-name forms. Anything else yields INVALID_DATE.
    """
    if value is None or isinstance(value, InvalidDate):
        return INVALID_DATE
    if isinstance(value, datetime):
        return _truncate(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return INVALID_DATE

    text = value.strip()
    if not text:
        return INVALID_DATE

    m = _YMD.match(text)
    if m:
        y, mo, d = (int(g) for g in m.groups())
        return _midnight(y, mo, d)

    m = _NN_NN_YYYY.match(text)
    if m:
        first, second, y = (int(g) for g in m.groups())
        if day_first:
            return _midnight(y, second, first)
        return _midnight(y, first, second)

    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return _truncate(datetime.fromisoformat(iso))
    except ValueError:
        pass

    try:
        return _truncate(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass

    for fmt in _NAMED_FORMATS:
        try:
            return _truncate(datetime.strptime(text, fmt))
        except ValueError:
            continue

    return INVALID_DATE


def today() -> datetime:
    return _truncate(datetime.now())


def to_ymd(value: DateOrInvalid) -> str:
    if not is_valid(value):
        return ""
    return value.strftime("%Y-%m-%d")


def classify(value: Any, today_: DateOrInvalid = None, day_first: bool = True) -> str:
    """Classify an appointment date: today or later is upcoming."""
    d = value if is_valid(value) else parse_date(value, day_first=day_first)
    if not is_valid(d):
        return "unknown"
    ref = today_ if is_valid(today_) else today()
    return "upcoming" if d >= ref else "past"


def _time_key(raw: Dict[str, Any]) -> Tuple[int, int]:
    hh, _, mm = str(raw.get("appointment_time") or "00:00").partition(":")
    try:
        return int(hh), int(mm[:2] or 0)
    except ValueError:
        return 0, 0


def split_upcoming_past(records: Iterable, today_: DateOrInvalid = None) -> Tuple[List, List, int]:
    """Split SourceRecords into (upcoming, past, undated_count).

    Upcoming is ordered soonest first by day then appointment_time, past is
    ordered most recent first. Records with invalid dates are left out of
    both lists and only counted.
    """
    ref = today_ if is_valid(today_) else today()
    upcoming, past = [], []
    undated = 0
    for record in records:
        bucket = classify(record.timestamp, ref)
        if bucket == "upcoming":
            upcoming.append(record)
        elif bucket == "past":
            past.append(record)
        else:
            undated += 1
    upcoming.sort(key=lambda r: (r.timestamp, _time_key(r.raw)))
    past.sort(key=lambda r: (r.timestamp, _time_key(r.raw)), reverse=True)
    return upcoming, past, undated
