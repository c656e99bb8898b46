"""
Execution-date and business-day helpers.

The distribution job keys its idempotency on a calendar date in the
configured business time zone, not on the UTC date.  These helpers are
pure: the caller supplies the instant.
"""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Python weekday numbers, Monday=0 .. Sunday=6
WEEKDAYS = frozenset({0, 1, 2, 3, 4})

_DAY_NAMES = {
    "MON": 0, "TUE": 1, "WED": 2, "THU": 3, "FRI": 4, "SAT": 5, "SUN": 6,
}


def resolve_time_zone(name: str) -> tzinfo:
    """
    Look up an IANA time zone.

    Raises:
        ValueError: If the zone is unknown.
    """
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown time zone: {name!r}") from None


def execution_date_for(instant: datetime, tz: tzinfo) -> date:
    """Calendar date of ``instant`` as seen in ``tz``.

    Raises:
        ValueError: If ``instant`` is naive.
    """
    if instant.tzinfo is None:
        raise ValueError("execution_date_for requires a timezone-aware datetime")
    return instant.astimezone(tz).date()


def is_business_day(day: date, business_days: frozenset[int] = WEEKDAYS) -> bool:
    return day.weekday() in business_days


def parse_business_days(names: list[str] | tuple[str, ...]) -> frozenset[int]:
    """Turn ``["MON", "TUE", ...]`` into Python weekday numbers.

    Raises:
        ValueError: On an unknown day name or an empty list.
    """
    if not names:
        raise ValueError("business_days must name at least one day")
    days: set[int] = set()
    for name in names:
        key = str(name).strip().upper()[:3]
        if key not in _DAY_NAMES:
            raise ValueError(f"Unknown business day: {name!r}")
        days.add(_DAY_NAMES[key])
    return frozenset(days)
