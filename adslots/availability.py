"""Date-range overlap predicates and per-day capacity checks."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Protocol

from sqlalchemy import Select, select

from adslots.dates import DateSpan, as_calendar_date
from adslots.models import Booking


class HasDateRange(Protocol):
    start_date: date
    end_date: date


def is_active_on(booking: HasDateRange, day: date | str, tz_name: str | None = None) -> bool:
    target = as_calendar_date(day, tz_name)
    return booking.start_date <= target <= booking.end_date


def ranges_overlap(a: HasDateRange, b: HasDateRange) -> bool:
    return a.start_date <= b.end_date and b.start_date <= a.end_date


def daily_counts(bookings: Iterable[HasDateRange], *, start_date: date, end_date: date) -> dict[date, int]:
    """Active-booking count for every day in the span, via a sweep over range edges."""
    span = DateSpan(start_date, end_date)
    deltas: dict[date, int] = {}
    for booking in bookings:
        if not ranges_overlap(booking, span):
            continue
        first = max(booking.start_date, span.start_date)
        last = min(booking.end_date, span.end_date)
        deltas[first] = deltas.get(first, 0) + 1
        after = last + timedelta(days=1)
        deltas[after] = deltas.get(after, 0) - 1

    counts: dict[date, int] = {}
    running = 0
    for day in span.days():
        running += deltas.get(day, 0)
        counts[day] = running
    return counts


def days_over_capacity(
    *,
    overlaps: Iterable[HasDateRange],
    start_date: date,
    end_date: date,
    max_capacity: int,
    additional: int = 1,
) -> list[date]:
    """Days in the span where ``additional`` more bookings would exceed ``max_capacity``."""
    counts = daily_counts(overlaps, start_date=start_date, end_date=end_date)
    return [day for day, count in counts.items() if count + additional > max_capacity]


def overlap_query(*, slot_names: Iterable[str], start_date: date, end_date: date, statuses: Iterable[str]) -> Select:
    return select(Booking).where(
        Booking.slot_name.in_(sorted(set(slot_names))),
        Booking.status.in_(sorted(set(statuses))),
        Booking.start_date <= end_date,
        Booking.end_date >= start_date,
    )
