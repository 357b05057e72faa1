"""Pydantic models for schedules, slots, appointments and API payloads."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Optional
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_date(value: str) -> str:
    date.fromisoformat(value)
    return value


DateStr = Annotated[str, Field(pattern=DATE_PATTERN), AfterValidator(_check_date)]


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PAID_EXTERNALLY = "paid_externally"


class Actor(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    SYSTEM = "system"


# --- Schedule side (written by the provider, read by the engine) ---


class ProviderSchedule(BaseModel):
    """Recurring working hours of a provider."""

    working_days: list[int] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5],
        description="Weekday numbers 0=Sunday, 6=Saturday",
    )
    start_time: str = Field(..., pattern=TIME_PATTERN, description="Day start HH:MM")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="Day end HH:MM")
    slot_interval_minutes: int = Field(default=30, ge=5, le=240)

    @field_validator("working_days")
    @classmethod
    def valid_weekdays(cls, days: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in days):
            raise ValueError("working_days must contain weekday numbers 0-6")
        return sorted(set(days))

    @model_validator(mode="after")
    def start_before_end(self) -> "ProviderSchedule":
        # HH:MM strings are zero padded, so lexical order is time order
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityEntry(BaseModel):
    """
    Working hours for one weekday, or for one calendar date.
    A date entry wins over a weekday entry, and both win over the weekly
    schedule. is_available=False closes the day.
    """

    id: str = Field(default_factory=_new_id)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    date: Optional[DateStr] = None
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    slot_interval_minutes: int = Field(default=30, ge=5, le=240)
    is_available: bool = True

    @model_validator(mode="after")
    def check_entry(self) -> "AvailabilityEntry":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if (self.day_of_week is None) == (self.date is None):
            raise ValueError("set exactly one of day_of_week or date")
        return self


class Break(BaseModel):
    """Recurring (weekly) or one-off interval in which nothing can be booked."""

    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=2)
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    is_recurring: bool = True
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    date: Optional[DateStr] = None

    @model_validator(mode="after")
    def check_interval(self) -> "Break":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if self.is_recurring and self.day_of_week is None:
            raise ValueError("recurring breaks require day_of_week")
        if not self.is_recurring and self.date is None:
            raise ValueError("one-off breaks require a date")
        return self


class BlockedSlot(BaseModel):
    """Blocking interval on one calendar date."""

    id: str = Field(default_factory=_new_id)
    date: DateStr
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    reason: str = ""

    @model_validator(mode="after")
    def start_before_end(self) -> "BlockedSlot":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class Service(BaseModel):
    """Bookable service. buffer_time is reserved after the service ends."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    duration_minutes: int = Field(..., ge=5, le=24 * 60)
    buffer_time: int = Field(default=0, ge=0, le=240)
    price: float = Field(default=0.0, ge=0)


class ProviderServiceTerms(BaseModel):
    """A provider's own duration, buffer or price for a catalogue service. Unset fields fall back to the service."""

    duration_minutes: Optional[int] = Field(default=None, ge=5, le=24 * 60)
    buffer_time: Optional[int] = Field(default=None, ge=0, le=240)
    price: Optional[float] = Field(default=None, ge=0)


# --- Slots ---


class TimeSlot(BaseModel):
    """Candidate or bookable interval, optionally annotated by a scorer."""

    start_time: str
    end_time: str
    is_available: bool = True
    score: Optional[float] = Field(default=None, ge=0, le=100)
    reason: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    availability_id: Optional[str] = None


# --- Appointments ---


class Review(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class HistoryEntry(BaseModel):
    """One committed status change."""

    from_status: AppointmentStatus
    to_status: AppointmentStatus
    actor: Actor
    at: datetime = Field(default_factory=_utcnow)


class Appointment(BaseModel):
    id: str = Field(default_factory=_new_id)
    client_id: str
    provider_id: str
    service_id: str
    date: DateStr
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str
    buffer_minutes: int = Field(default=0, ge=0)
    status: AppointmentStatus = AppointmentStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    discount: Optional[int] = Field(default=None, ge=0, le=100)
    original_price: float = 0.0
    discount_amount: float = 0.0
    notes: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    review: Optional[Review] = None
    history: list[HistoryEntry] = Field(default_factory=list)


# --- Request / Response ---


class ReserveRequest(BaseModel):
    """Request body for POST /api/appointments."""

    provider_id: str
    client_id: str
    service_id: str
    date: DateStr
    start_time: str = Field(..., pattern=TIME_PATTERN)
    notes: str = ""
    discount: Optional[int] = Field(default=None, ge=0, le=100)


class TransitionRequest(BaseModel):
    target_status: AppointmentStatus
    actor: Actor


class PaymentStatusRequest(BaseModel):
    payment_status: PaymentStatus
    actor: Actor = Actor.SYSTEM


class RescheduleRequest(BaseModel):
    date: DateStr
    start_time: str = Field(..., pattern=TIME_PATTERN)
    actor: Actor


class ReviewRequest(BaseModel):
    client_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class AvailabilityResponse(BaseModel):
    """Response from GET /api/providers/{provider_id}/time-slots."""

    provider_id: str
    service_id: Optional[str] = None
    date: str
    mode: str = Field(..., description="simple (unscored) or smart (scored)")
    duration_minutes: int
    slots: list[TimeSlot]


class SlotCheckResponse(BaseModel):
    is_available: bool
