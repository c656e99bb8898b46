"""
Pure cron evaluation for the reward scheduler.

Contract:
    ``parse_cron`` turns a 5-field expression into a CronSpec;
    ``matches_cron`` and ``next_fire_time`` evaluate it.  No I/O, and no
    datetime.now() calls: every instant comes from the caller.

Cron conventions:
    Fields are ``minute hour day_of_month month day_of_week``.
    Day of week uses 0=Sunday .. 6=Saturday (7 is accepted as Sunday).
    Supports ``*``, single values, ranges (1-5), lists (1,3,5) and steps
    (*/15, 1-10/2).  Day of month and day of week must both match.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

_MAX_LOOKAHEAD_DAYS = 366


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression; each field is the set of allowed values."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]

    def matches_day(self, day: date) -> bool:
        # Python weekday 0=Mon; cron 0=Sun
        cron_dow = (day.weekday() + 1) % 7
        return (
            day.day in self.days_of_month
            and day.month in self.months
            and cron_dow in self.days_of_week
        )


def _parse_bounds(text: str, low: int, high: int) -> tuple[int, int]:
    if text == "*":
        return low, high
    if "-" in text:
        start_text, end_text = text.split("-", 1)
        start, end = int(start_text), int(end_text)
        if start > end:
            raise ValueError(f"Range start > end: {text}")
        return start, end
    value = int(text)
    return value, value


def _parse_field(text: str, low: int, high: int, name: str) -> frozenset[int]:
    """
    Parse one comma-separated cron field.

    Raises:
        ValueError: On bad syntax or a value outside [low, high].
    """
    values: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty element in cron {name} field: {text!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step <= 0:
                raise ValueError(f"Step must be positive in cron {name} field: {text!r}")
            if part != "*" and "-" not in part:
                # "5/10" means 5, 15, 25, ... up to the field maximum
                part = f"{part}-{high}"

        start, end = _parse_bounds(part, low, high)
        if start < low or end > high:
            raise ValueError(
                f"Cron {name} value out of range [{low}, {high}]: {text!r}"
            )
        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """
    Parse a 5-field cron expression.

    Raises:
        ValueError: If the expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}"
        )

    try:
        days_of_week = _parse_field(parts[4], 0, 7, "day_of_week")
        return CronSpec(
            expression=expression.strip(),
            minutes=_parse_field(parts[0], 0, 59, "minute"),
            hours=_parse_field(parts[1], 0, 23, "hour"),
            days_of_month=_parse_field(parts[2], 1, 31, "day_of_month"),
            months=_parse_field(parts[3], 1, 12, "month"),
            days_of_week=frozenset(d % 7 for d in days_of_week),
        )
    except ValueError as exc:
        raise ValueError(f"Invalid cron expression {expression!r}: {exc}") from None


def matches_cron(cron: CronSpec, moment: datetime) -> bool:
    """True if ``moment`` (in its own time zone) falls on a cron minute."""
    return (
        cron.matches_day(moment.date())
        and moment.hour in cron.hours
        and moment.minute in cron.minutes
    )


def next_fire_time(cron: CronSpec, after: datetime, tz: tzinfo) -> datetime:
    """First cron minute strictly after ``after``, evaluated as wall time in ``tz``.

    Walks day by day, so the cost is bounded by the lookahead window rather
    than the number of minutes in it.

    Raises:
        ValueError: If ``after`` is naive or nothing matches within a year.
    """
    if after.tzinfo is None:
        raise ValueError("next_fire_time requires a timezone-aware datetime")

    local_after = after.astimezone(tz)
    hours = sorted(cron.hours)
    minutes = sorted(cron.minutes)
    day = local_after.date()

    for _ in range(_MAX_LOOKAHEAD_DAYS + 1):
        if cron.matches_day(day):
            for hour in hours:
                for minute in minutes:
                    candidate = datetime.combine(day, time(hour, minute), tzinfo=tz)
                    if candidate > local_after:
                        return candidate
        day += timedelta(days=1)

    raise ValueError(
        f"No match for cron {cron.expression!r} within "
        f"{_MAX_LOOKAHEAD_DAYS} days after {after.isoformat()}"
    )
