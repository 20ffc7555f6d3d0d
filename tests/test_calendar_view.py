from datetime import date

from adslots.calendar_view import bookings_in_month, calendar_window, month_calendar
from adslots.catalog import load_catalog
from adslots.rules import CONFIRMED_ONLY
from adslots.schema import OccupancyLevel
from conftest import jan


def test_month_grid_shape():
    month = month_calendar(load_catalog(), [], 2024, 1, CONFIRMED_ONLY, today=jan(15))
    assert month.leading_blanks == 1
    assert len(month.days) == 31
    assert [day.is_today for day in month.days].index(True) == 14
    assert all(day.level == OccupancyLevel.LOW for day in month.days)


def test_day_badges_follow_slot_occupancy(make_booking):
    bookings = [
        make_booking("eDM", jan(10), jan(12)),
        make_booking("메인배너", jan(11), jan(11)),
        make_booking("메인배너", jan(11), jan(11), status="문의중"),
    ]
    month = month_calendar(load_catalog(), bookings, 2024, 1, CONFIRMED_ONLY)
    eleventh = month.days[10]
    badges = {badge.slot: badge for badge in eleventh.slots}

    assert eleventh.booking_count == 2
    assert badges["eDM"].occupied == 1
    assert badges["eDM"].level == OccupancyLevel.FULL
    assert badges["메인배너"].occupied == 1
    assert eleventh.level == OccupancyLevel.FULL
    assert month.days[12].booking_count == 0
    assert len(month.bookings) == 3


def test_expansion_booking_shows_on_each_target_badge(make_booking):
    month = month_calendar(load_catalog(), [make_booking("사이드배너", jan(1), jan(1))], 2024, 1, CONFIRMED_ONLY)
    badges = {badge.slot: badge.occupied for badge in month.days[0].slots}
    assert badges["사이드배너1"] == badges["사이드배너2"] == badges["사이드배너3"] == 1
    assert month.days[0].booking_count == 1


def test_bookings_in_month_includes_spanning_ranges(make_booking):
    spanning = make_booking("메인배너", date(2023, 12, 20), date(2024, 2, 10), booking_id="spanning")
    inside = make_booking("메인배너", jan(5), jan(6), booking_id="inside")
    elsewhere = make_booking("메인배너", date(2024, 3, 1), date(2024, 3, 2), booking_id="elsewhere")
    assert [b.id for b in bookings_in_month([elsewhere, inside, spanning], 2024, 1)] == ["spanning", "inside"]


def test_calendar_window_crosses_year_boundary():
    months = calendar_window(load_catalog(), [], 2024, 1, CONFIRMED_ONLY)
    assert [(m.year, m.month) for m in months] == [(2023, 12), (2024, 1), (2024, 2)]
    assert len(months[2].days) == 29
