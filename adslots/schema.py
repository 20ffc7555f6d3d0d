"""Pydantic schemas for the slot catalog, booking snapshots and engine results."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from adslots.dates import as_calendar_date


class PipelineStatus(str, Enum):
    INQUIRY = "문의중"
    QUOTED = "견적제시"
    SCHEDULING = "일정조율중"
    BOOKED = "부킹확정"
    RUNNING = "집행중"
    REPORTED = "결과보고"
    INVOICED = "세금계산서 발행 및 대금 청구"
    PAID = "매출 입금"


class RejectionReason(str, Enum):
    UNKNOWN_SLOT = "UNKNOWN_SLOT"
    INVALID_RANGE = "INVALID_RANGE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    CAPACITY_ZERO = "CAPACITY_ZERO"
    NOT_FOUND = "NOT_FOUND"
    STORE_ERROR = "STORE_ERROR"


class OccupancyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    FULL = "full"


class SlotDefinition(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)
    capacity: int = Field(ge=0)


class AliasExpansion(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    label: str = Field(min_length=1)
    slots: list[str] = Field(min_length=1)


class CatalogConfig(BaseModel):
    version: str = "1"
    slots: list[SlotDefinition]
    expansions: list[AliasExpansion] = Field(default_factory=list)


class DateRangeModel(BaseModel):
    """Inclusive calendar-date range, validated at the boundary.

    Datetimes are reduced to calendar dates in the zone passed as
    ``context={"timezone": ...}`` to ``model_validate`` (Asia/Seoul otherwise).
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    start_date: date
    end_date: date

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def to_local_date(cls, value, info: ValidationInfo):
        if not isinstance(value, (str, date)):
            return value
        tz_name = (info.context or {}).get("timezone")
        return as_calendar_date(value, tz_name)

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        return self


class BookingRecord(DateRangeModel):
    id: Optional[str] = None
    advertiser_id: Optional[str] = None
    advertiser_name: Optional[str] = None
    slot_name: str
    status: str


class BookingDraft(DateRangeModel):
    slot_name: str = Field(min_length=1)
    advertiser_id: Optional[str] = None
    booking_id: Optional[str] = None


class OccupancyResult(BaseModel):
    slot: str
    date: date
    occupied: int
    capacity: int
    available: int
    occupancy_rate: float
    level: OccupancyLevel
    overbooked: bool = False
    unknown_slot: bool = False
    bookings: list[BookingRecord] = Field(default_factory=list)
    unrecognized_slot_names: list[str] = Field(default_factory=list)


class DayOccupancy(BaseModel):
    date: date
    slots: list[OccupancyResult]
    unassigned: list[BookingRecord] = Field(default_factory=list)


class AcceptanceResult(BaseModel):
    accepted: bool
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    slot: Optional[str] = None
    canonical_slots: list[str] = Field(default_factory=list)
    conflict_date: Optional[date] = None
    conflict_dates: list[date] = Field(default_factory=list)
    conflicting_bookings: list[BookingRecord] = Field(default_factory=list)
    booking: Optional[BookingRecord] = None

    @field_validator("message")
    @classmethod
    def normalize_message(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class BookingActionResult(BaseModel):
    success: bool
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    booking: Optional[BookingRecord] = None


class SlotReport(BaseModel):
    slot: str
    capacity: int
    booking_count: int
    peak_occupied: int
    peak_level: OccupancyLevel
    average_rate: float
    full_days: list[date] = Field(default_factory=list)
    overbooked_days: list[date] = Field(default_factory=list)


class OccupancyReport(BaseModel):
    start_date: date
    end_date: date
    catalog_version: str
    slots: list[SlotReport]


class OverbookingFlag(BaseModel):
    slot: str
    date: date
    occupied: int
    capacity: int
    booking_ids: list[str]


class SlotBadge(BaseModel):
    slot: str
    occupied: int
    capacity: int
    level: OccupancyLevel


class CalendarDay(BaseModel):
    date: date
    booking_count: int
    level: OccupancyLevel
    is_today: bool = False
    slots: list[SlotBadge]


class CalendarMonth(BaseModel):
    year: int
    month: int
    leading_blanks: int
    days: list[CalendarDay]
    bookings: list[BookingRecord]


class CalendarWindowResponse(BaseModel):
    months: list[CalendarMonth]


class CatalogResponse(BaseModel):
    version: str
    slots: list[SlotDefinition]
    expansions: list[AliasExpansion]


class NormalizeResponse(BaseModel):
    name: str
    known: bool
    canonical_slots: list[str]


class BookingCreateRequest(DateRangeModel):
    advertiser_id: str = Field(min_length=1)
    advertiser_name: Optional[str] = None
    slot_name: str = Field(min_length=1)
    status: PipelineStatus = PipelineStatus.BOOKED


class BookingStatusUpdateRequest(BaseModel):
    status: PipelineStatus


class BookingScheduleUpdateRequest(DateRangeModel):
    pass


class BookingListResponse(BaseModel):
    bookings: list[BookingRecord]


class OverbookingResponse(BaseModel):
    start_date: date
    end_date: date
    flags: list[OverbookingFlag]
