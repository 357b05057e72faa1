"""FastAPI application for the availability & booking engine."""

from datetime import date
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from booking_engine.config import get_settings
from booking_engine.engine import BookingEngine
from booking_engine.errors import (
    AppointmentNotFoundError,
    AvailabilityNotFoundError,
    BlockedSlotNotFoundError,
    BookingError,
    BreakNotFoundError,
    IllegalTransitionError,
    ReviewAlreadyExistsError,
    ReviewNotAllowedError,
    ScheduleNotFoundError,
    ServiceNotFoundError,
    SlotConflictError,
)
from booking_engine.logging_config import setup_logging
from booking_engine.schema import (
    Appointment,
    AvailabilityEntry,
    AvailabilityResponse,
    BlockedSlot,
    Break,
    PaymentStatusRequest,
    ProviderSchedule,
    ProviderServiceTerms,
    RescheduleRequest,
    ReserveRequest,
    ReviewRequest,
    Service,
    SlotCheckResponse,
    TIME_PATTERN,
    TransitionRequest,
)

setup_logging()

app = FastAPI(title="Availability & Booking Engine", version="0.1.0")
app.state.engine = BookingEngine.from_settings(get_settings())

ERROR_STATUS: dict[type[BookingError], int] = {
    ScheduleNotFoundError: status.HTTP_404_NOT_FOUND,
    ServiceNotFoundError: status.HTTP_404_NOT_FOUND,
    AppointmentNotFoundError: status.HTTP_404_NOT_FOUND,
    BreakNotFoundError: status.HTTP_404_NOT_FOUND,
    BlockedSlotNotFoundError: status.HTTP_404_NOT_FOUND,
    AvailabilityNotFoundError: status.HTTP_404_NOT_FOUND,
    SlotConflictError: status.HTTP_409_CONFLICT,
    ReviewAlreadyExistsError: status.HTTP_409_CONFLICT,
    IllegalTransitionError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ReviewNotAllowedError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def get_engine(request: Request) -> BookingEngine:
    return request.app.state.engine


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    body: dict = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, IllegalTransitionError):
        body["current"] = exc.current
        body["target"] = exc.target
    return JSONResponse(status_code=code, content=body)


# --- availability ---


@app.get("/api/providers/{provider_id}/time-slots", response_model=AvailabilityResponse)
def time_slots(
    provider_id: str,
    day: date = Query(..., alias="date"),
    service_id: Optional[str] = Query(default=None, alias="serviceId"),
    duration: Optional[int] = Query(default=None, ge=5, le=24 * 60),
    mode: Literal["simple", "smart"] = "simple",
    preview: bool = False,
    time_of_day: Optional[Literal["morning", "afternoon", "evening"]] = Query(
        default=None, alias="timeOfDay"
    ),
    engine: BookingEngine = Depends(get_engine),
) -> AvailabilityResponse:
    """
    Bookable slots for a provider on a date.
    mode=smart adds recommendation scores; preview=true returns the full grid.
    """
    slots = engine.availability(
        provider_id,
        day.isoformat(),
        service_id=service_id,
        duration=duration,
        mode=mode,
        preview=preview,
        time_of_day=time_of_day,
    )
    duration, _ = engine.resolve_duration(provider_id, service_id, duration)
    return AvailabilityResponse(
        provider_id=provider_id,
        service_id=service_id,
        date=day.isoformat(),
        mode=mode,
        duration_minutes=duration,
        slots=slots,
    )


@app.get("/api/providers/{provider_id}/time-slots/check", response_model=SlotCheckResponse)
def check_slot(
    provider_id: str,
    day: date = Query(..., alias="date"),
    service_id: str = Query(..., alias="serviceId"),
    start_time: str = Query(..., alias="startTime", pattern=TIME_PATTERN),
    engine: BookingEngine = Depends(get_engine),
) -> SlotCheckResponse:
    available = engine.check_slot(provider_id, service_id, day.isoformat(), start_time)
    return SlotCheckResponse(is_available=available)


# --- schedule management ---


@app.put("/api/providers/{provider_id}/schedule", response_model=ProviderSchedule)
def put_schedule(
    provider_id: str,
    schedule: ProviderSchedule,
    engine: BookingEngine = Depends(get_engine),
) -> ProviderSchedule:
    return engine.set_schedule(provider_id, schedule)


@app.get("/api/providers/{provider_id}/breaks", response_model=list[Break])
def list_breaks(provider_id: str, engine: BookingEngine = Depends(get_engine)) -> list[Break]:
    return engine.list_breaks(provider_id)


@app.post(
    "/api/providers/{provider_id}/breaks",
    response_model=Break,
    status_code=status.HTTP_201_CREATED,
)
def create_break(provider_id: str, brk: Break, engine: BookingEngine = Depends(get_engine)) -> Break:
    return engine.add_break(provider_id, brk)


@app.delete("/api/provider-breaks/{break_id}")
def delete_break(break_id: str, engine: BookingEngine = Depends(get_engine)) -> dict:
    engine.delete_break(break_id)
    return {"success": True}


@app.post(
    "/api/providers/{provider_id}/blocked-slots",
    response_model=BlockedSlot,
    status_code=status.HTTP_201_CREATED,
)
def create_blocked_slot(
    provider_id: str,
    blocked: BlockedSlot,
    engine: BookingEngine = Depends(get_engine),
) -> BlockedSlot:
    return engine.add_blocked_slot(provider_id, blocked)


@app.get("/api/providers/{provider_id}/blocked-slots", response_model=list[BlockedSlot])
def list_blocked_slots(
    provider_id: str,
    day: Optional[date] = Query(default=None, alias="date"),
    engine: BookingEngine = Depends(get_engine),
) -> list[BlockedSlot]:
    return engine.list_blocked_slots(provider_id, day.isoformat() if day else None)


@app.delete("/api/blocked-slots/{blocked_slot_id}")
def unblock_slot(blocked_slot_id: str, engine: BookingEngine = Depends(get_engine)) -> dict:
    engine.delete_blocked_slot(blocked_slot_id)
    return {"success": True}


@app.get("/api/providers/{provider_id}/availability", response_model=list[AvailabilityEntry])
def list_availability(
    provider_id: str,
    engine: BookingEngine = Depends(get_engine),
) -> list[AvailabilityEntry]:
    return engine.list_availability(provider_id)


@app.post(
    "/api/providers/{provider_id}/availability",
    response_model=AvailabilityEntry,
    status_code=status.HTTP_201_CREATED,
)
def set_availability(
    provider_id: str,
    entry: AvailabilityEntry,
    engine: BookingEngine = Depends(get_engine),
) -> AvailabilityEntry:
    """Set the hours of one weekday or one date; replaces an entry for the same day."""
    return engine.set_availability(provider_id, entry)


@app.delete("/api/availability/{availability_id}")
def delete_availability(availability_id: str, engine: BookingEngine = Depends(get_engine)) -> dict:
    engine.delete_availability(availability_id)
    return {"success": True}


@app.post("/api/services", response_model=Service, status_code=status.HTTP_201_CREATED)
def create_service(service: Service, engine: BookingEngine = Depends(get_engine)) -> Service:
    return engine.add_service(service)


@app.put("/api/providers/{provider_id}/services/{service_id}", response_model=ProviderServiceTerms)
def set_provider_service_terms(
    provider_id: str,
    service_id: str,
    terms: ProviderServiceTerms,
    engine: BookingEngine = Depends(get_engine),
) -> ProviderServiceTerms:
    return engine.set_provider_terms(provider_id, service_id, terms)


# --- appointments ---


@app.post("/api/appointments", response_model=Appointment, status_code=status.HTTP_201_CREATED)
def reserve(request: ReserveRequest, engine: BookingEngine = Depends(get_engine)) -> Appointment:
    """Reserve a slot. 409 means someone else got it first: refetch and pick again."""
    return engine.reserve(
        request.provider_id,
        request.client_id,
        request.service_id,
        request.date,
        request.start_time,
        notes=request.notes,
        discount=request.discount,
    )


@app.get("/api/appointments/{appointment_id}", response_model=Appointment)
def get_appointment(appointment_id: str, engine: BookingEngine = Depends(get_engine)) -> Appointment:
    return engine.get_appointment(appointment_id)


@app.post("/api/appointments/{appointment_id}/transition", response_model=Appointment)
def transition(
    appointment_id: str,
    request: TransitionRequest,
    engine: BookingEngine = Depends(get_engine),
) -> Appointment:
    return engine.transition(appointment_id, request.target_status, request.actor)


@app.post("/api/appointments/{appointment_id}/payment-status", response_model=Appointment)
def set_payment_status(
    appointment_id: str,
    request: PaymentStatusRequest,
    engine: BookingEngine = Depends(get_engine),
) -> Appointment:
    return engine.set_payment_status(appointment_id, request.payment_status, request.actor)


@app.post("/api/appointments/{appointment_id}/reschedule", response_model=Appointment)
def reschedule(
    appointment_id: str,
    request: RescheduleRequest,
    engine: BookingEngine = Depends(get_engine),
) -> Appointment:
    return engine.reschedule(appointment_id, request.date, request.start_time, request.actor)


@app.post("/api/appointments/{appointment_id}/review", response_model=Appointment)
def review(
    appointment_id: str,
    request: ReviewRequest,
    engine: BookingEngine = Depends(get_engine),
) -> Appointment:
    return engine.add_review(appointment_id, request.client_id, request.rating, request.comment)


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
