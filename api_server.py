from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Literal, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from adslots.calendar_view import calendar_window
from adslots.catalog import CatalogConfigError
from adslots.dates import month_span, shift_month, today
from adslots.engine import (
    check_availability,
    create_booking,
    current_catalog,
    current_policy,
    delete_booking,
    reconcile_overbooking,
    reschedule_booking,
    snapshot,
    update_booking_status,
)
from adslots.occupancy import occupancy_for_day, occupancy_on, occupancy_report
from adslots.schema import (
    BookingListResponse,
    CalendarWindowResponse,
    CatalogResponse,
    DayOccupancy,
    NormalizeResponse,
    OccupancyReport,
    OccupancyResult,
    OverbookingResponse,
    RejectionReason,
)
from config import get_settings
from db.session import validate_db_compatibility

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_db_compatibility()
    catalog = current_catalog()
    logger.info(
        "Slot catalog %s loaded with %s slots; occupying statuses: %s",
        catalog.version,
        len(catalog),
        ", ".join(settings.occupying_statuses),
    )
    yield


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)


def _local_today() -> date:
    return today(settings.timezone)


def _flow_response(result: dict) -> JSONResponse:
    if result.get("reason") == RejectionReason.NOT_FOUND.value:
        raise HTTPException(status_code=404, detail=result.get("message") or "Booking not found.")
    return JSONResponse(content=result)


@app.exception_handler(CatalogConfigError)
def handle_catalog_error(_, exc: CatalogConfigError):
    logger.error("Slot catalog configuration is invalid: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Slot catalog configuration is invalid: {exc}"},
    )


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
        current_catalog()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/v1/slots", response_model=CatalogResponse)
def list_slots():
    config = current_catalog().to_config()
    return CatalogResponse(version=config.version, slots=config.slots, expansions=config.expansions)


@app.get("/v1/slots/normalize", response_model=NormalizeResponse)
def normalize_slot_name(name: str):
    catalog = current_catalog()
    canonical = catalog.ordered(catalog.normalize(name))
    return NormalizeResponse(name=name, known=bool(canonical), canonical_slots=canonical)


@app.get("/v1/slots/{slot}/occupancy", response_model=OccupancyResult)
def get_slot_occupancy(slot: str, day: Optional[date] = None):
    target = day or _local_today()
    return occupancy_on(
        current_catalog(),
        snapshot(start_date=target, end_date=target),
        slot,
        target,
        current_policy(),
        tz_name=settings.timezone,
    )


@app.get("/v1/occupancy", response_model=DayOccupancy)
def get_day_occupancy(day: Optional[date] = None):
    target = day or _local_today()
    return occupancy_for_day(
        current_catalog(),
        snapshot(start_date=target, end_date=target),
        target,
        current_policy(),
        tz_name=settings.timezone,
    )


@app.get("/v1/calendar", response_model=CalendarWindowResponse)
def get_calendar(
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
):
    local_today = _local_today()
    year = year or local_today.year
    month = month or local_today.month
    first = month_span(*shift_month(year, month, -1)).start_date
    last = month_span(*shift_month(year, month, 1)).end_date
    months = calendar_window(
        current_catalog(),
        snapshot(start_date=first, end_date=last),
        year,
        month,
        current_policy(),
        today=local_today,
    )
    return CalendarWindowResponse(months=months)


@app.get("/v1/reports/occupancy", response_model=OccupancyReport)
def get_occupancy_report(start_date: date, end_date: date):
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be on or before end_date.")
    return occupancy_report(
        current_catalog(),
        snapshot(start_date=start_date, end_date=end_date),
        start_date,
        end_date,
        current_policy(),
    )


@app.get("/v1/reports/overbooking", response_model=OverbookingResponse)
def get_overbooking_report(start_date: date, end_date: date):
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must be on or before end_date.")
    flags = reconcile_overbooking(start_date, end_date)
    return OverbookingResponse(start_date=start_date, end_date=end_date, flags=flags)


@app.post("/v1/bookings/check")
def check_booking(payload: dict[str, Any] = Body(...)):
    return JSONResponse(content=check_availability(payload))


@app.post("/v1/bookings")
def create_booking_route(payload: dict[str, Any] = Body(...)):
    return JSONResponse(content=create_booking(payload))


@app.get("/v1/bookings", response_model=BookingListResponse)
def list_bookings(
    advertiser_id: Optional[str] = None,
    slot: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    slot_names = None
    if slot:
        slot_names = current_catalog().recorded_names(slot) or {slot}
    bookings = snapshot(
        start_date=start_date,
        end_date=end_date,
        advertiser_id=advertiser_id,
        slot_names=slot_names,
    )
    return BookingListResponse(bookings=bookings)


@app.patch("/v1/bookings/{booking_id}/status")
def update_booking_status_route(booking_id: str, payload: dict[str, Any] = Body(...)):
    return _flow_response(update_booking_status(booking_id, payload))


@app.patch("/v1/bookings/{booking_id}/schedule")
def reschedule_booking_route(booking_id: str, payload: dict[str, Any] = Body(...)):
    return _flow_response(reschedule_booking(booking_id, payload))


@app.delete("/v1/bookings/{booking_id}")
def delete_booking_route(booking_id: str):
    return _flow_response(delete_booking(booking_id))
