"""Calendar-date handling for booking ranges.

Bookings run from a start day through an end day inclusive. Every comparison
in this package happens on ``datetime.date`` values in one fixed zone, never
on instants, so a booking ending "today" in Seoul does not roll over at UTC
midnight.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Seoul"


def _zone(tz_name: str | None) -> ZoneInfo:
    return ZoneInfo(tz_name or DEFAULT_TIMEZONE)


def as_calendar_date(value: date | datetime | str, tz_name: str | None = None) -> date:
    """Coerce a date-like value into a calendar date in ``tz_name``.

    Aware datetimes are converted into the zone before the date is taken.
    Naive datetimes are assumed to already be local.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(_zone(tz_name))
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_calendar_date(datetime.fromisoformat(text), tz_name)
    raise TypeError(f"Cannot interpret {type(value).__name__} as a calendar date.")


def today(tz_name: str | None = None) -> date:
    return datetime.now(_zone(tz_name)).date()


@dataclass(frozen=True)
class DateSpan:
    start_date: date
    end_date: date

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise ValueError(f"start_date {self.start_date} is after end_date {self.end_date}.")

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def days(self) -> Iterator[date]:
        cursor = self.start_date
        while cursor <= self.end_date:
            yield cursor
            cursor += timedelta(days=1)

    def __len__(self) -> int:
        return (self.end_date - self.start_date).days + 1


def month_span(year: int, month: int) -> DateSpan:
    last_day = calendar.monthrange(year, month)[1]
    return DateSpan(date(year, month, 1), date(year, month, last_day))


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def leading_blanks(year: int, month: int) -> int:
    # Sunday-first grid: Monday=0 in weekday(), so Sunday lands on column 0.
    return (date(year, month, 1).weekday() + 1) % 7
