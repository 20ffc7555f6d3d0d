import json
import logging

import pytest

from adslots.engine import (
    check_availability,
    create_booking,
    delete_booking,
    reconcile_overbooking,
    reschedule_booking,
    snapshot,
    update_booking_status,
)
from adslots.models import Booking
from db.session import SessionLocal
from conftest import jan

pytestmark = pytest.mark.usefixtures("store")


def book(slot_name, start, end, status="부킹확정", advertiser_id="adv-1"):
    return create_booking(
        {
            "advertiserId": advertiser_id,
            "slotName": slot_name,
            "startDate": start,
            "endDate": end,
            "status": status,
        }
    )


def test_create_booking_persists_the_row():
    result = book("메인배너", "2024-01-10", "2024-01-20")
    assert result["accepted"] is True
    assert result["canonical_slots"] == ["메인배너"]
    assert result["booking"]["slot_name"] == "메인배너"

    stored = snapshot()
    assert [b.id for b in stored] == [result["booking"]["id"]]
    assert stored[0].start_date == jan(10)


def test_second_booking_on_full_slot_is_rejected():
    first = book("eDM", "2024-01-10", "2024-01-12")
    second = book("eDM 전체 이미지", "2024-01-12", "2024-01-14")

    assert first["accepted"] is True
    assert second["accepted"] is False
    assert second["reason"] == "CAPACITY_EXCEEDED"
    assert second["conflict_date"] == "2024-01-12"
    assert [b["id"] for b in second["conflicting_bookings"]] == [first["booking"]["id"]]
    assert len(snapshot()) == 1


def test_non_occupying_status_never_consumes_capacity():
    assert book("eDM", "2024-01-10", "2024-01-12")["accepted"] is True
    inquiry = book("eDM", "2024-01-10", "2024-01-12", status="문의중")
    assert inquiry["accepted"] is True
    assert len(snapshot()) == 2


def test_invalid_range_and_payload():
    reversed_range = book("메인배너", "2024-01-20", "2024-01-10")
    assert reversed_range["accepted"] is False
    assert reversed_range["reason"] == "INVALID_RANGE"

    missing = create_booking({"slotName": "메인배너", "startDate": "2024-01-10", "endDate": "2024-01-11"})
    assert missing["reason"] == "INVALID_PAYLOAD"

    bad_status = book("메인배너", "2024-01-10", "2024-01-11", status="cancelled")
    assert bad_status["reason"] == "INVALID_PAYLOAD"
    assert snapshot() == []


def test_unknown_slot_is_rejected_before_writing():
    result = book("팝업", "2024-01-10", "2024-01-11")
    assert result["reason"] == "UNKNOWN_SLOT"
    assert snapshot() == []


def test_promoting_an_inquiry_rechecks_capacity():
    book("eDM", "2024-01-10", "2024-01-12")
    inquiry = book("eDM", "2024-01-11", "2024-01-11", status="문의중")

    blocked = update_booking_status(inquiry["booking"]["id"], {"status": "부킹확정"})
    assert blocked["accepted"] is False
    assert blocked["reason"] == "CAPACITY_EXCEEDED"

    quoted = update_booking_status(inquiry["booking"]["id"], {"status": "견적제시"})
    assert quoted["accepted"] is True
    assert quoted["booking"]["status"] == "견적제시"


def test_promoting_on_free_days_is_accepted():
    book("eDM", "2024-01-10", "2024-01-12")
    inquiry = book("eDM", "2024-01-20", "2024-01-21", status="문의중")
    promoted = update_booking_status(inquiry["booking"]["id"], {"status": "부킹확정"})
    assert promoted["accepted"] is True
    assert promoted["booking"]["status"] == "부킹확정"


def test_reschedule_does_not_count_the_booking_against_itself():
    own = book("eDM", "2024-01-01", "2024-01-05")
    book("eDM", "2024-01-08", "2024-01-09")

    moved = reschedule_booking(own["booking"]["id"], {"startDate": "2024-01-03", "endDate": "2024-01-07"})
    assert moved["accepted"] is True
    assert moved["booking"]["end_date"] == "2024-01-07"

    clash = reschedule_booking(own["booking"]["id"], {"startDate": "2024-01-06", "endDate": "2024-01-08"})
    assert clash["reason"] == "CAPACITY_EXCEEDED"
    assert clash["conflict_dates"] == ["2024-01-08"]


def test_reschedule_rejects_reversed_range():
    own = book("메인배너", "2024-01-01", "2024-01-05")
    result = reschedule_booking(own["booking"]["id"], {"startDate": "2024-01-09", "endDate": "2024-01-07"})
    assert result["reason"] == "INVALID_RANGE"


def test_missing_bookings_are_reported_as_not_found():
    assert update_booking_status("missing", {"status": "부킹확정"})["reason"] == "NOT_FOUND"
    assert reschedule_booking("missing", {"startDate": "2024-01-01", "endDate": "2024-01-02"})["reason"] == "NOT_FOUND"
    assert delete_booking("missing")["reason"] == "NOT_FOUND"


def test_delete_booking_frees_capacity():
    first = book("eDM", "2024-01-10", "2024-01-12")
    deleted = delete_booking(first["booking"]["id"])
    assert deleted["success"] is True
    assert snapshot() == []
    assert book("eDM", "2024-01-10", "2024-01-12")["accepted"] is True


def test_check_availability_does_not_write():
    book("eDM", "2024-01-10", "2024-01-12")
    verdict = check_availability({"slotName": "eDM", "startDate": "2024-01-12", "endDate": "2024-01-13"})
    assert verdict["accepted"] is False
    assert verdict["conflict_date"] == "2024-01-12"
    free = check_availability({"slotName": "eDM", "startDate": "2024-01-13", "endDate": "2024-01-13"})
    assert free["accepted"] is True
    assert len(snapshot()) == 1


def test_snapshot_filters():
    book("메인배너", "2024-01-01", "2024-01-05", advertiser_id="adv-1")
    book("eDM", "2024-01-10", "2024-01-12", advertiser_id="adv-2")
    assert len(snapshot(start_date=jan(6), end_date=jan(9))) == 0
    assert len(snapshot(start_date=jan(5), end_date=jan(10))) == 2
    assert [b.slot_name for b in snapshot(advertiser_id="adv-2")] == ["eDM"]
    assert [b.slot_name for b in snapshot(slot_names={"메인배너"})] == ["메인배너"]


def test_reconcile_flags_rows_written_around_the_checks(caplog):
    with SessionLocal() as db:
        with db.begin():
            for booking_id in ("legacy-1", "legacy-2"):
                db.add(
                    Booking(
                        id=booking_id,
                        advertiser_id="adv-1",
                        slot_name="eDM",
                        start_date=jan(10),
                        end_date=jan(10),
                        status="부킹확정",
                    )
                )

    with caplog.at_level(logging.ERROR, logger="adslots.engine"):
        flags = reconcile_overbooking(jan(1), jan(31))

    assert len(flags) == 1
    assert flags[0].slot == "eDM"
    assert flags[0].booking_ids == ["legacy-1", "legacy-2"]
    assert "Overbooked slot eDM" in caplog.text


def test_catalog_file_is_read_per_call(tmp_path, monkeypatch):
    from config import get_settings

    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"version": "t", "slots": [{"name": "eDM", "capacity": 2}]}), encoding="utf-8")
    monkeypatch.setenv("AD_SLOTS_CATALOG_PATH", str(path))
    get_settings.cache_clear()

    assert book("eDM", "2024-01-10", "2024-01-12")["accepted"] is True
    assert book("eDM", "2024-01-10", "2024-01-12")["accepted"] is True
    assert book("eDM", "2024-01-10", "2024-01-12")["reason"] == "CAPACITY_EXCEEDED"
    assert book("메인배너", "2024-01-10", "2024-01-12")["reason"] == "UNKNOWN_SLOT"


@pytest.fixture
def lock_events(monkeypatch):
    from sqlalchemy.orm import Session

    import adslots.engine as flows

    events = []
    original_get = Session.get

    def recording_get(self, entity, ident, **kwargs):
        if kwargs.get("with_for_update"):
            events.append("row")
        return original_get(self, entity, ident, **kwargs)

    def recording_lock(db, slots):
        events.append(("slots", tuple(sorted(slots))))

    monkeypatch.setattr(Session, "get", recording_get)
    monkeypatch.setattr(flows, "_lock_slots", recording_lock)
    return events


def test_reschedule_takes_slot_lock_before_row_lock(lock_events):
    own = book("eDM", "2024-01-01", "2024-01-05")
    lock_events.clear()

    moved = reschedule_booking(own["booking"]["id"], {"startDate": "2024-01-02", "endDate": "2024-01-06"})
    assert moved["accepted"] is True
    assert lock_events[0] == ("slots", ("eDM",))
    assert "row" in lock_events[1:]


def test_status_change_takes_slot_lock_before_row_lock(lock_events):
    inquiry = book("사이드배너", "2024-01-01", "2024-01-05", status="문의중")
    lock_events.clear()

    promoted = update_booking_status(inquiry["booking"]["id"], {"status": "부킹확정"})
    assert promoted["accepted"] is True
    assert lock_events[0] == ("slots", ("사이드배너1", "사이드배너2", "사이드배너3"))
    assert "row" in lock_events[1:]


def test_delete_takes_slot_lock_before_row_lock(lock_events):
    own = book("메인배너", "2024-01-01", "2024-01-05")
    lock_events.clear()

    assert delete_booking(own["booking"]["id"])["success"] is True
    assert lock_events[:2] == [("slots", ("메인배너",)), "row"]
