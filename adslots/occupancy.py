"""Occupancy queries and the advisory capacity check.

Every function here is a pure computation over the catalog and a booking
snapshot supplied by the caller. ``can_accept`` only reports whether a draft
fits the snapshot it was given. The store that persists the booking must
repeat the check atomically at write time (see ``adslots.engine``).
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Sequence

from adslots.availability import daily_counts, days_over_capacity, is_active_on, ranges_overlap
from adslots.catalog import SlotCatalog
from adslots.dates import DateSpan, as_calendar_date
from adslots.rules import StatusPolicy, classify_occupancy
from adslots.schema import (
    AcceptanceResult,
    BookingDraft,
    BookingRecord,
    DayOccupancy,
    OccupancyLevel,
    OccupancyReport,
    OccupancyResult,
    OverbookingFlag,
    RejectionReason,
    SlotReport,
)

logger = logging.getLogger(__name__)


def _sorted(bookings: Iterable[BookingRecord]) -> list[BookingRecord]:
    return sorted(bookings, key=lambda b: (b.start_date, b.end_date, b.id or ""))


def _rate(occupied: int, capacity: int) -> float:
    if capacity <= 0:
        return 1.0
    return occupied / capacity


def active_bookings_on(
    bookings: Iterable[BookingRecord],
    day: date | str,
    policy: StatusPolicy | None = None,
    tz_name: str | None = None,
) -> list[BookingRecord]:
    target = as_calendar_date(day, tz_name)
    return _sorted(
        b for b in bookings if is_active_on(b, target) and (policy is None or policy.occupies(b.status))
    )


def _slot_bookings(
    catalog: SlotCatalog,
    bookings: Iterable[BookingRecord],
    slot: str,
    policy: StatusPolicy,
) -> list[BookingRecord]:
    return [b for b in bookings if policy.occupies(b.status) and slot in catalog.normalize(b.slot_name)]


def _unrecognized(catalog: SlotCatalog, bookings: Iterable[BookingRecord]) -> list[BookingRecord]:
    return [b for b in bookings if not catalog.normalize(b.slot_name)]


def _warn_unrecognized(catalog: SlotCatalog, active: list[BookingRecord], target: date) -> list[str]:
    unrecognized = _unrecognized(catalog, active)
    names = sorted({b.slot_name for b in unrecognized})
    if names:
        logger.warning(
            "Ignoring %s booking(s) with unknown slot names on %s: %s",
            len(unrecognized),
            target,
            ", ".join(names),
        )
    return names


def occupancy_on(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    slot: str,
    day: date | str,
    policy: StatusPolicy,
    tz_name: str | None = None,
) -> OccupancyResult:
    target = as_calendar_date(day, tz_name)
    active = active_bookings_on(bookings, target, policy)
    unrecognized_names = _warn_unrecognized(catalog, active, target)
    return _slot_occupancy(catalog, active, slot, target, policy, unrecognized_names)


def _slot_occupancy(
    catalog: SlotCatalog,
    active: list[BookingRecord],
    slot: str,
    target: date,
    policy: StatusPolicy,
    unrecognized_names: list[str],
) -> OccupancyResult:
    definition = catalog.get(slot)
    if definition is None:
        logger.warning("Occupancy requested for unknown slot %r", slot)
        return OccupancyResult(
            slot=slot,
            date=target,
            occupied=0,
            capacity=0,
            available=0,
            occupancy_rate=1.0,
            level=OccupancyLevel.FULL,
            unknown_slot=True,
            unrecognized_slot_names=unrecognized_names,
        )

    holding = _slot_bookings(catalog, active, slot, policy)
    occupied = len(holding)
    capacity = definition.capacity
    rate = _rate(occupied, capacity)
    return OccupancyResult(
        slot=slot,
        date=target,
        occupied=occupied,
        capacity=capacity,
        available=max(capacity - occupied, 0),
        occupancy_rate=rate,
        level=classify_occupancy(rate),
        overbooked=occupied > capacity,
        bookings=holding,
        unrecognized_slot_names=unrecognized_names,
    )


def occupancy_for_day(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    day: date | str,
    policy: StatusPolicy,
    tz_name: str | None = None,
) -> DayOccupancy:
    target = as_calendar_date(day, tz_name)
    active = active_bookings_on(bookings, target, policy)
    unrecognized_names = _warn_unrecognized(catalog, active, target)
    return DayOccupancy(
        date=target,
        slots=[_slot_occupancy(catalog, active, slot.name, target, policy, unrecognized_names) for slot in catalog],
        unassigned=_unrecognized(catalog, active),
    )


def can_accept(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    draft: BookingDraft,
    policy: StatusPolicy,
) -> AcceptanceResult:
    """Check a draft against every day of its range on each canonical slot it maps to.

    The draft is assumed to hold a position. Rejects on the first slot, in
    catalog order, that is already full on any day of the draft.
    """
    targets = catalog.ordered(catalog.normalize(draft.slot_name))
    if not targets:
        return AcceptanceResult(
            accepted=False,
            reason=RejectionReason.UNKNOWN_SLOT,
            message=f"Slot {draft.slot_name!r} is not in the catalog.",
        )

    candidates = [
        b
        for b in bookings
        if (draft.booking_id is None or b.id != draft.booking_id) and ranges_overlap(b, draft)
    ]
    for slot in targets:
        overlaps = _slot_bookings(catalog, candidates, slot, policy)
        capacity = catalog.capacity(slot)

        if capacity <= 0:
            return AcceptanceResult(
                accepted=False,
                reason=RejectionReason.CAPACITY_ZERO,
                message=f"Slot {slot} has no bookable capacity.",
                slot=slot,
                canonical_slots=targets,
                conflict_date=draft.start_date,
                conflict_dates=[draft.start_date],
                conflicting_bookings=_sorted(overlaps),
            )

        full_days = days_over_capacity(
            overlaps=overlaps,
            start_date=draft.start_date,
            end_date=draft.end_date,
            max_capacity=capacity,
        )
        if full_days:
            full = set(full_days)
            conflicting = [b for b in overlaps if any(b.start_date <= d <= b.end_date for d in full)]
            return AcceptanceResult(
                accepted=False,
                reason=RejectionReason.CAPACITY_EXCEEDED,
                message=f"Capacity exceeded for {slot} on {full_days[0].isoformat()} ({capacity} max).",
                slot=slot,
                canonical_slots=targets,
                conflict_date=full_days[0],
                conflict_dates=full_days,
                conflicting_bookings=_sorted(conflicting),
            )

    return AcceptanceResult(accepted=True, canonical_slots=targets)


def occupancy_report(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    start_date: date,
    end_date: date,
    policy: StatusPolicy,
) -> OccupancyReport:
    span = DateSpan(start_date, end_date)
    in_span = [b for b in bookings if ranges_overlap(b, span)]
    reports: list[SlotReport] = []
    for definition in catalog:
        holding = _slot_bookings(catalog, in_span, definition.name, policy)
        counts = daily_counts(holding, start_date=span.start_date, end_date=span.end_date)
        capacity = definition.capacity
        peak = max(counts.values(), default=0)
        rates = [_rate(count, capacity) for count in counts.values()]
        reports.append(
            SlotReport(
                slot=definition.name,
                capacity=capacity,
                booking_count=len(holding),
                peak_occupied=peak,
                peak_level=classify_occupancy(_rate(peak, capacity)),
                average_rate=sum(rates) / len(rates),
                full_days=[day for day, count in counts.items() if count >= capacity],
                overbooked_days=[day for day, count in counts.items() if count > capacity],
            )
        )
    return OccupancyReport(
        start_date=span.start_date,
        end_date=span.end_date,
        catalog_version=catalog.version,
        slots=reports,
    )


def find_overbooked(
    catalog: SlotCatalog,
    bookings: Sequence[BookingRecord],
    start_date: date,
    end_date: date,
    policy: StatusPolicy,
) -> list[OverbookingFlag]:
    """Slot-days where stored bookings already exceed capacity."""
    span = DateSpan(start_date, end_date)
    in_span = [b for b in bookings if ranges_overlap(b, span)]
    flags: list[OverbookingFlag] = []
    for definition in catalog:
        holding = _slot_bookings(catalog, in_span, definition.name, policy)
        counts = daily_counts(holding, start_date=span.start_date, end_date=span.end_date)
        for day, count in counts.items():
            if count > definition.capacity:
                flags.append(
                    OverbookingFlag(
                        slot=definition.name,
                        date=day,
                        occupied=count,
                        capacity=definition.capacity,
                        booking_ids=[b.id for b in _sorted(holding) if b.id is not None and is_active_on(b, day)],
                    )
                )
    return flags
