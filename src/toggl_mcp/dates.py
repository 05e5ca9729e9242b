"""
Date range helpers for report and timeline tools. All ranges are local time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

SECONDS_PER_DAY = 86400

DATE_PERIODS = ("today", "yesterday", "week", "lastWeek", "month", "lastMonth")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _monday(day: date) -> date:
    return day - timedelta(days=day.weekday())


def is_date_period(value: object) -> bool:
    return isinstance(value, str) and value in DATE_PERIODS


def get_date_range(period: str, today: date | None = None) -> DateRange:
    today = today or date.today()

    if period == "today":
        return DateRange(_midnight(today), _midnight(today + timedelta(days=1)))
    if period == "yesterday":
        return DateRange(_midnight(today - timedelta(days=1)), _midnight(today))
    if period in ("week", "lastWeek"):
        monday = _monday(today)
        if period == "lastWeek":
            monday -= timedelta(days=7)
        sunday = monday + timedelta(days=6)
        return DateRange(_midnight(monday), datetime.combine(sunday, _END_OF_DAY))
    if period in ("month", "lastMonth"):
        first = today.replace(day=1)
        if period == "lastMonth":
            first = (first - timedelta(days=1)).replace(day=1)
        next_first = (first + timedelta(days=32)).replace(day=1)
        last = next_first - timedelta(days=1)
        return DateRange(_midnight(first), datetime.combine(last, _END_OF_DAY))

    raise ValueError(
        f"Invalid period: {period}. Must be one of: {', '.join(DATE_PERIODS)}"
    )


def week_bounds(week_offset: int = 0, today: date | None = None) -> DateRange:
    today = today or date.today()
    monday = _monday(today) + timedelta(weeks=week_offset)
    sunday = monday + timedelta(days=6)
    return DateRange(_midnight(monday), datetime.combine(sunday, _END_OF_DAY))


def parse_date(value: object, name: str) -> datetime:
    """Parse a strict YYYY-MM-DD string to local midnight."""
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    if not _DATE_RE.match(value):
        raise ValueError(f"{name} must be in YYYY-MM-DD format")
    try:
        return _midnight(date.fromisoformat(value))
    except ValueError:
        raise ValueError(f"{name} is not a valid calendar date") from None


def resolve_date_range(
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> DateRange | None:
    """Range from a named period or explicit dates; None means caller default."""
    if period:
        if not is_date_period(period):
            raise ValueError(
                f"Invalid period: {period}. Must be one of: {', '.join(DATE_PERIODS)}"
            )
        return get_date_range(period)

    if start_date or end_date:
        now = datetime.now()
        start = parse_date(start_date, "start_date") if start_date else now
        parsed_end = parse_date(end_date, "end_date") if end_date else now
        if start > parsed_end:
            raise ValueError("start_date must be before or equal to end_date")
        # end_date is inclusive
        return DateRange(start, parsed_end + timedelta(days=1))

    return None


def parse_iso_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
