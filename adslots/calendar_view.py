"""Month grids with per-day occupancy badges for the booking calendar."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Sequence

from adslots.availability import daily_counts, ranges_overlap
from adslots.catalog import SlotCatalog
from adslots.dates import leading_blanks, month_span, shift_month
from adslots.rules import StatusPolicy, busiest_level, classify_occupancy
from adslots.schema import BookingRecord, CalendarDay, CalendarMonth, SlotBadge


def bookings_in_month(bookings: Iterable[BookingRecord], year: int, month: int) -> list[BookingRecord]:
    span = month_span(year, month)
    return sorted(
        (b for b in bookings if ranges_overlap(b, span)),
        key=lambda b: (b.start_date, b.end_date, b.id or ""),
    )


def month_calendar(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    year: int,
    month: int,
    policy: StatusPolicy,
    today: date | None = None,
) -> CalendarMonth:
    span = month_span(year, month)
    in_month = bookings_in_month(bookings, year, month)
    occupying = [b for b in in_month if policy.occupies(b.status)]

    per_slot: dict[str, dict[date, int]] = {}
    for definition in catalog:
        holding = [b for b in occupying if definition.name in catalog.normalize(b.slot_name)]
        per_slot[definition.name] = daily_counts(holding, start_date=span.start_date, end_date=span.end_date)
    totals = daily_counts(occupying, start_date=span.start_date, end_date=span.end_date)

    days: list[CalendarDay] = []
    for day in span.days():
        badges = []
        for definition in catalog:
            occupied = per_slot[definition.name][day]
            rate = occupied / definition.capacity if definition.capacity > 0 else 1.0
            badges.append(
                SlotBadge(
                    slot=definition.name,
                    occupied=occupied,
                    capacity=definition.capacity,
                    level=classify_occupancy(rate),
                )
            )
        days.append(
            CalendarDay(
                date=day,
                booking_count=totals[day],
                level=busiest_level(badge.level for badge in badges),
                is_today=day == today,
                slots=badges,
            )
        )

    return CalendarMonth(
        year=year,
        month=month,
        leading_blanks=leading_blanks(year, month),
        days=days,
        bookings=in_month,
    )


def calendar_window(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    year: int,
    month: int,
    policy: StatusPolicy,
    today: date | None = None,
    offsets: Iterable[int] = (-1, 0, 1),
) -> list[CalendarMonth]:
    months = []
    for offset in offsets:
        y, m = shift_month(year, month, offset)
        months.append(month_calendar(catalog, bookings, y, m, policy, today=today))
    return months
