"""Store-backed booking flows.

``can_accept`` in ``adslots.occupancy`` is advisory. The flows here repeat it
inside the write transaction. On PostgreSQL that transaction first takes an
advisory lock per canonical slot, then loads the overlapping rows ``FOR
UPDATE``, and only writes when the locked snapshot still has room. Two
concurrent writers on the same slot are therefore serialized.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import date
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adslots.availability import overlap_query
from adslots.catalog import SlotCatalog, load_catalog
from adslots.models import Booking
from adslots.occupancy import can_accept, find_overbooked
from adslots.rules import StatusPolicy
from adslots.schema import (
    AcceptanceResult,
    BookingActionResult,
    BookingCreateRequest,
    BookingDraft,
    BookingRecord,
    BookingScheduleUpdateRequest,
    BookingStatusUpdateRequest,
    OverbookingFlag,
    RejectionReason,
)
from config import get_settings
from db.session import SessionLocal

logger = logging.getLogger(__name__)

RANGE_ERROR_MARKER = "start_date must be on or before end_date"


def current_catalog() -> SlotCatalog:
    return load_catalog(get_settings().catalog_path)


def current_policy() -> StatusPolicy:
    return StatusPolicy.of(get_settings().occupying_statuses)


def validation_context() -> dict[str, str]:
    return {"timezone": get_settings().timezone}


def to_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        advertiser_id=row.advertiser_id,
        advertiser_name=row.advertiser_name,
        slot_name=row.slot_name,
        start_date=row.start_date,
        end_date=row.end_date,
        status=row.status,
    )


def _invalid_payload(exc: ValidationError) -> AcceptanceResult:
    if any(RANGE_ERROR_MARKER in err.get("msg", "") for err in exc.errors()):
        return AcceptanceResult(
            accepted=False,
            reason=RejectionReason.INVALID_RANGE,
            message="start_date must be on or before end_date.",
        )
    return AcceptanceResult(accepted=False, reason=RejectionReason.INVALID_PAYLOAD, message=f"Invalid booking payload: {exc}")


def _not_found(booking_id: str) -> AcceptanceResult:
    return AcceptanceResult(accepted=False, reason=RejectionReason.NOT_FOUND, message=f"Booking {booking_id} not found.")


def _store_error(action: str) -> AcceptanceResult:
    return AcceptanceResult(accepted=False, reason=RejectionReason.STORE_ERROR, message=f"Database error while {action}.")


def _advisory_lock_key(slot: str) -> int:
    h = hashlib.sha256(slot.encode()).digest()[:8]
    return int.from_bytes(h, "big") % (2**63)


def _lock_slots(db: Session, slots: Iterable[str]) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    # Sorted so that writers touching several slots always lock in the same order.
    for slot in sorted(slots):
        db.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": _advisory_lock_key(slot)})


def _get_for_update(db: Session, catalog: SlotCatalog, booking_id: str) -> Booking | None:
    """Load a booking row for update.

    Slot locks are always taken before row locks, the same order
    ``create_booking`` uses, so the slot is read unlocked first.
    """
    booking = db.get(Booking, booking_id)
    if booking is None:
        return None
    _lock_slots(db, catalog.normalize(booking.slot_name))
    return db.get(Booking, booking_id, with_for_update=True, populate_existing=True)


def _locked_check(db: Session, catalog: SlotCatalog, policy: StatusPolicy, draft: BookingDraft) -> AcceptanceResult:
    canonical = catalog.normalize(draft.slot_name)
    if not canonical:
        return can_accept(catalog, [], draft, policy)

    _lock_slots(db, canonical)
    recorded = set().union(*(catalog.recorded_names(slot) for slot in canonical))
    stmt = overlap_query(
        slot_names=recorded,
        start_date=draft.start_date,
        end_date=draft.end_date,
        statuses=policy.occupying,
    ).with_for_update()
    snapshot = [to_record(row) for row in db.scalars(stmt)]
    return can_accept(catalog, snapshot, draft, policy)


def load_snapshot(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    advertiser_id: str | None = None,
    slot_names: Iterable[str] | None = None,
) -> list[BookingRecord]:
    stmt = select(Booking).order_by(Booking.start_date.asc(), Booking.id.asc())
    if end_date is not None:
        stmt = stmt.where(Booking.start_date <= end_date)
    if start_date is not None:
        stmt = stmt.where(Booking.end_date >= start_date)
    if advertiser_id:
        stmt = stmt.where(Booking.advertiser_id == advertiser_id)
    if slot_names is not None:
        stmt = stmt.where(Booking.slot_name.in_(sorted(set(slot_names))))
    return [to_record(row) for row in db.scalars(stmt)]


def snapshot(**filters: Any) -> list[BookingRecord]:
    with SessionLocal() as db:
        return load_snapshot(db, **filters)


def check_availability(payload: dict) -> dict:
    try:
        draft = BookingDraft.model_validate(payload, context=validation_context())
    except ValidationError as exc:
        return _invalid_payload(exc).model_dump(mode="json")

    catalog = current_catalog()
    policy = current_policy()
    canonical = catalog.normalize(draft.slot_name)
    recorded = set().union(*(catalog.recorded_names(slot) for slot in canonical))
    with SessionLocal() as db:
        stmt = overlap_query(
            slot_names=recorded,
            start_date=draft.start_date,
            end_date=draft.end_date,
            statuses=policy.occupying,
        )
        bookings = [to_record(row) for row in db.scalars(stmt)]
    return can_accept(catalog, bookings, draft, policy).model_dump(mode="json")


def create_booking(payload: dict) -> dict:
    try:
        request = BookingCreateRequest.model_validate(payload, context=validation_context())
    except ValidationError as exc:
        return _invalid_payload(exc).model_dump(mode="json")

    catalog = current_catalog()
    policy = current_policy()
    canonical = catalog.ordered(catalog.normalize(request.slot_name))
    if not canonical:
        return AcceptanceResult(
            accepted=False,
            reason=RejectionReason.UNKNOWN_SLOT,
            message=f"Slot {request.slot_name!r} is not in the catalog.",
        ).model_dump(mode="json")

    draft = BookingDraft(
        slot_name=request.slot_name,
        start_date=request.start_date,
        end_date=request.end_date,
        advertiser_id=request.advertiser_id,
    )
    with SessionLocal() as db:
        try:
            with db.begin():
                if policy.occupies(request.status):
                    result = _locked_check(db, catalog, policy, draft)
                    if not result.accepted:
                        logger.info(
                            "Rejected booking for %s on %s (%s..%s): %s",
                            request.advertiser_id,
                            request.slot_name,
                            request.start_date,
                            request.end_date,
                            result.reason.value if result.reason else "unknown",
                        )
                        return result.model_dump(mode="json")

                booking = Booking(
                    advertiser_id=request.advertiser_id,
                    advertiser_name=request.advertiser_name,
                    slot_name=request.slot_name,
                    start_date=request.start_date,
                    end_date=request.end_date,
                    status=request.status.value,
                )
                db.add(booking)
                db.flush()
                logger.info("Created booking %s on %s (%s..%s)", booking.id, booking.slot_name, booking.start_date, booking.end_date)

                return AcceptanceResult(
                    accepted=True,
                    canonical_slots=canonical,
                    booking=to_record(booking),
                ).model_dump(mode="json")
        except SQLAlchemyError:
            logger.exception("Store error while creating booking on %s", request.slot_name)
            db.rollback()
            return _store_error("creating booking").model_dump(mode="json")


def update_booking_status(booking_id: str, payload: dict) -> dict:
    try:
        request = BookingStatusUpdateRequest.model_validate(payload)
    except ValidationError as exc:
        return _invalid_payload(exc).model_dump(mode="json")

    catalog = current_catalog()
    policy = current_policy()
    with SessionLocal() as db:
        try:
            with db.begin():
                booking = _get_for_update(db, catalog, booking_id)
                if not booking:
                    return _not_found(booking_id).model_dump(mode="json")

                # Only a move into a space-occupying status can newly consume capacity.
                if policy.occupies(request.status) and not policy.occupies(booking.status):
                    draft = BookingDraft(
                        slot_name=booking.slot_name,
                        start_date=booking.start_date,
                        end_date=booking.end_date,
                        booking_id=booking.id,
                    )
                    result = _locked_check(db, catalog, policy, draft)
                    if not result.accepted:
                        return result.model_dump(mode="json")

                previous = booking.status
                booking.status = request.status.value
                db.flush()
                logger.info("Booking %s status %s -> %s", booking.id, previous, booking.status)

                return AcceptanceResult(
                    accepted=True,
                    canonical_slots=catalog.ordered(catalog.normalize(booking.slot_name)),
                    booking=to_record(booking),
                ).model_dump(mode="json")
        except SQLAlchemyError:
            logger.exception("Store error while updating booking %s", booking_id)
            db.rollback()
            return _store_error("updating booking status").model_dump(mode="json")


def reschedule_booking(booking_id: str, payload: dict) -> dict:
    try:
        request = BookingScheduleUpdateRequest.model_validate(payload, context=validation_context())
    except ValidationError as exc:
        return _invalid_payload(exc).model_dump(mode="json")

    catalog = current_catalog()
    policy = current_policy()
    with SessionLocal() as db:
        try:
            with db.begin():
                booking = _get_for_update(db, catalog, booking_id)
                if not booking:
                    return _not_found(booking_id).model_dump(mode="json")

                if policy.occupies(booking.status):
                    draft = BookingDraft(
                        slot_name=booking.slot_name,
                        start_date=request.start_date,
                        end_date=request.end_date,
                        booking_id=booking.id,
                    )
                    result = _locked_check(db, catalog, policy, draft)
                    if not result.accepted:
                        return result.model_dump(mode="json")

                booking.start_date = request.start_date
                booking.end_date = request.end_date
                db.flush()
                logger.info("Booking %s rescheduled to %s..%s", booking.id, booking.start_date, booking.end_date)

                return AcceptanceResult(
                    accepted=True,
                    canonical_slots=catalog.ordered(catalog.normalize(booking.slot_name)),
                    booking=to_record(booking),
                ).model_dump(mode="json")
        except SQLAlchemyError:
            logger.exception("Store error while rescheduling booking %s", booking_id)
            db.rollback()
            return _store_error("rescheduling booking").model_dump(mode="json")


def delete_booking(booking_id: str) -> dict:
    catalog = current_catalog()
    with SessionLocal() as db:
        try:
            with db.begin():
                booking = _get_for_update(db, catalog, booking_id)
                if not booking:
                    return BookingActionResult(
                        success=False,
                        reason=RejectionReason.NOT_FOUND,
                        message=f"Booking {booking_id} not found.",
                    ).model_dump(mode="json")
                record = to_record(booking)
                db.delete(booking)
                db.flush()
                logger.info("Deleted booking %s", booking_id)
                return BookingActionResult(success=True, booking=record).model_dump(mode="json")
        except SQLAlchemyError:
            logger.exception("Store error while deleting booking %s", booking_id)
            db.rollback()
            return BookingActionResult(
                success=False,
                reason=RejectionReason.STORE_ERROR,
                message="Database error while deleting booking.",
            ).model_dump(mode="json")


def reconcile_overbooking(start_date: date, end_date: date) -> list[OverbookingFlag]:
    """Flag slot-days that ended up over capacity despite the write-time checks."""
    flags = find_overbooked(
        current_catalog(),
        snapshot(start_date=start_date, end_date=end_date),
        start_date,
        end_date,
        current_policy(),
    )
    for flag in flags:
        logger.error(
            "Overbooked slot %s on %s: %s of %s (%s)",
            flag.slot,
            flag.date,
            flag.occupied,
            flag.capacity,
            ", ".join(flag.booking_ids),
        )
    return flags
