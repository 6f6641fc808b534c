"""Calendar-day keys.

Every comparison between purchase dates, price history entries and chart days
goes through ``date_key``: instants are converted to UTC first, then truncated
to the calendar day.
"""

from datetime import date, datetime, timedelta
from typing import Iterator, Union

import pytz

Instant = Union[datetime, date, str, int, float]


def date_key(instant: Instant) -> date:
    """Return the UTC calendar day an instant falls on.

    Accepts aware datetimes (any offset), naive datetimes (taken as UTC),
    plain dates, ISO-8601 strings and UNIX timestamps in milliseconds.
    """
    if isinstance(instant, (int, float)) and not isinstance(instant, bool):
        return datetime.fromtimestamp(instant / 1000, tz=pytz.utc).date()
    if isinstance(instant, str):
        instant = _parse_iso(instant)
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            instant = pytz.utc.localize(instant)
        return instant.astimezone(pytz.utc).date()
    if isinstance(instant, date):
        return instant
    raise TypeError(f"Cannot derive a day key from {type(instant).__name__}")


def _parse_iso(value: str) -> Union[datetime, date]:
    value = value.strip()
    if len(value) == 10:
        return date.fromisoformat(value)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def day_range(start: date, end: date) -> Iterator[date]:
    """Yield every day from start to end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
