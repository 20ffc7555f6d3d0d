import os
import tempfile
from datetime import date

import pytest

# db.session builds its engine at import time, so the test database must be
# configured before any test module imports it.
_DB_DIR = tempfile.mkdtemp(prefix="adslots-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'bookings.db')}"
os.environ.pop("AD_SLOTS_CATALOG_PATH", None)
os.environ.pop("AD_SLOTS_OCCUPYING_STATUSES", None)
os.environ["AD_SLOTS_TIMEZONE"] = "Asia/Seoul"

from adslots.schema import BookingRecord  # noqa: E402
from config import get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    from adslots.models import Base
    from db.session import engine, init_db

    Base.metadata.drop_all(bind=engine)
    init_db()
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_booking():
    counter = {"n": 0}

    def _make(slot_name, start, end, status="부킹확정", advertiser_id="adv", booking_id=None):
        counter["n"] += 1
        return BookingRecord(
            id=booking_id or f"b{counter['n']}",
            advertiser_id=advertiser_id,
            slot_name=slot_name,
            start_date=start,
            end_date=end,
            status=status,
        )

    return _make


def jan(day: int) -> date:
    return date(2024, 1, day)
