"""Deterministic slot generation and validity filtering.

Everything here is a pure function of its arguments: no store access and
no clock reads. Callers pass ``now`` explicitly as an aware datetime in
the business timezone.
"""

from datetime import date, datetime
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from booking_engine.schema import (
    Appointment,
    AppointmentStatus,
    AvailabilityEntry,
    BlockedSlot,
    Break,
    ProviderSchedule,
    TimeSlot,
)

TIME_OF_DAY = {
    "morning": (0, 12),
    "afternoon": (12, 18),
    "evening": (18, 24),
}

MINUTES_PER_DAY = 24 * 60


class DayHours(BaseModel):
    """Working window of one date and the availability entry that defined it."""

    start_time: str
    end_time: str
    slot_interval_minutes: int
    availability_id: Optional[str] = None


def _parse_time(s: str) -> tuple[int, int]:
    """Parse HH:MM to (hour, minute)."""
    parts = s.split(":")
    return int(parts[0]), int(parts[1])


def to_minutes(s: str) -> int:
    """HH:MM to minutes since midnight."""
    h, m = _parse_time(s)
    return h * 60 + m


def format_minutes(minutes: int) -> str:
    """Minutes since midnight to HH:MM."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_number(d: date) -> int:
    """Weekday with 0=Sunday, 6=Saturday."""
    return d.isoweekday() % 7


def business_now(timezone_name: str) -> datetime:
    return datetime.now(ZoneInfo(timezone_name))


def _overlaps(start: float, end: float, other_start: float, other_end: float) -> bool:
    """Half-open interval intersection."""
    return start < other_end and end > other_start


def day_hours(
    schedule: ProviderSchedule,
    target_date: str,
    availability: Iterable[AvailabilityEntry] = (),
) -> Optional[DayHours]:
    """
    Working window for target_date, or None when the provider does not work.

    A date entry wins over a weekday entry, which wins over the weekly
    schedule. An entry with is_available=False closes the day.
    """
    weekday = weekday_number(date.fromisoformat(target_date))
    by_date = by_weekday = None
    for entry in availability:
        if entry.date == target_date:
            by_date = entry
        elif entry.date is None and entry.day_of_week == weekday:
            by_weekday = entry

    entry = by_date or by_weekday
    if entry is not None:
        if not entry.is_available:
            return None
        return DayHours(
            start_time=entry.start_time,
            end_time=entry.end_time,
            slot_interval_minutes=entry.slot_interval_minutes,
            availability_id=entry.id,
        )
    if weekday not in schedule.working_days:
        return None
    return DayHours(
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        slot_interval_minutes=schedule.slot_interval_minutes,
    )


def generate_candidate_slots(
    hours: Union[ProviderSchedule, DayHours],
    duration_minutes: int,
    availability_id: Optional[str] = None,
) -> list[TimeSlot]:
    """
    Raw candidate grid for one day.
    Starts run from hours.start_time (inclusive) to hours.end_time
    (exclusive) every slot_interval_minutes; each candidate lasts duration_minutes.
    Late candidates may run past the day end; filter_valid_slots drops them.
    Only candidates that would end at or after midnight are left out here.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    day_start = to_minutes(hours.start_time)
    day_end = to_minutes(hours.end_time)
    return [
        TimeSlot(
            start_time=format_minutes(start),
            end_time=format_minutes(start + duration_minutes),
            availability_id=availability_id,
        )
        for start in range(day_start, day_end, hours.slot_interval_minutes)
        if start + duration_minutes < MINUTES_PER_DAY
    ]


def blocks_for_date(
    target_date: str,
    breaks: Iterable[Break],
    blocked_slots: Iterable[BlockedSlot] = (),
) -> list[BlockedSlot]:
    """Materialize the blocking intervals that apply on target_date."""
    weekday = weekday_number(date.fromisoformat(target_date))
    blocks: list[BlockedSlot] = []
    for brk in breaks:
        if brk.is_recurring:
            applies = brk.day_of_week == weekday
        else:
            applies = brk.date == target_date
        if applies:
            blocks.append(
                BlockedSlot(
                    id=brk.id,
                    date=target_date,
                    start_time=brk.start_time,
                    end_time=brk.end_time,
                    reason=brk.name,
                )
            )
    blocks.extend(b for b in blocked_slots if b.date == target_date)
    return blocks


def _busy_intervals(
    appointments: Iterable[Appointment],
    target_date: str,
    ignore_appointment_id: Optional[str],
) -> list[tuple[int, int]]:
    """Occupied [start, end + buffer) intervals of non-canceled appointments."""
    busy = []
    for appt in appointments:
        if appt.date != target_date or appt.status == AppointmentStatus.CANCELED:
            continue
        if ignore_appointment_id is not None and appt.id == ignore_appointment_id:
            continue
        busy.append(
            (to_minutes(appt.start_time), to_minutes(appt.end_time) + appt.buffer_minutes)
        )
    return busy


def _rejection(
    start: int,
    occupied_end: int,
    day_start: int,
    day_end: int,
    blocks: list[BlockedSlot],
    busy: list[tuple[int, int]],
    cutoff: Optional[float],
) -> Optional[str]:
    """First rule a slot breaks, or None if it is bookable."""
    if start < day_start or occupied_end > day_end:
        return "outside working hours"
    for block in blocks:
        if _overlaps(start, occupied_end, to_minutes(block.start_time), to_minutes(block.end_time)):
            return f"blocked: {block.reason}" if block.reason else "blocked"
    for busy_start, busy_end in busy:
        if _overlaps(start, occupied_end, busy_start, busy_end):
            return "already booked"
    if cutoff is not None and start <= cutoff:
        return "in the past"
    return None


def filter_valid_slots(
    candidates: list[TimeSlot],
    target_date: str,
    schedule: ProviderSchedule,
    *,
    availability: Iterable[AvailabilityEntry] = (),
    breaks: Iterable[Break] = (),
    blocked_slots: Iterable[BlockedSlot] = (),
    appointments: Iterable[Appointment] = (),
    buffer_minutes: int = 0,
    now: datetime,
    keep_rejected: bool = False,
    ignore_appointment_id: Optional[str] = None,
) -> list[TimeSlot]:
    """
    Reduce candidates to bookable slots.

    Rules, in order: working day (terminal for the whole date), working-hours
    containment of [start, end + buffer), breaks and blocked slots, overlap with
    non-canceled appointments, and, for today, start strictly after now.
    Dates before today yield nothing.

    With keep_rejected the whole grid comes back, rejected slots flagged
    is_available=False with the rule they broke in ``reason``.
    """
    day = date.fromisoformat(target_date)
    today = now.date()
    hours = day_hours(schedule, target_date, availability)

    day_reason = None
    if hours is None:
        day_reason = "not a working day"
    elif day < today:
        day_reason = "in the past"
    if day_reason is not None:
        if not keep_rejected:
            return []
        return [
            slot.model_copy(update={"is_available": False, "reason": day_reason})
            for slot in candidates
        ]

    day_start = to_minutes(hours.start_time)
    day_end = to_minutes(hours.end_time)
    blocks = blocks_for_date(target_date, breaks, blocked_slots)
    busy = _busy_intervals(appointments, target_date, ignore_appointment_id)
    cutoff = now.hour * 60 + now.minute + now.second / 60 if day == today else None

    result: list[TimeSlot] = []
    for slot in candidates:
        start = to_minutes(slot.start_time)
        occupied_end = to_minutes(slot.end_time) + buffer_minutes
        reason = _rejection(start, occupied_end, day_start, day_end, blocks, busy, cutoff)
        if reason is None:
            result.append(slot.model_copy(update={"is_available": True}))
        elif keep_rejected:
            result.append(slot.model_copy(update={"is_available": False, "reason": reason}))
    return result


def compute_slots(
    schedule: ProviderSchedule,
    target_date: str,
    duration_minutes: int,
    *,
    availability: Iterable[AvailabilityEntry] = (),
    breaks: Iterable[Break] = (),
    blocked_slots: Iterable[BlockedSlot] = (),
    appointments: Iterable[Appointment] = (),
    buffer_minutes: int = 0,
    now: datetime,
    preview: bool = False,
) -> list[TimeSlot]:
    """
    Generate the day's grid and filter it. preview keeps rejected slots.
    On a day off, preview shows the weekly schedule's grid, all rejected.
    """
    availability = list(availability)
    hours = day_hours(schedule, target_date, availability)
    if hours is None:
        candidates = generate_candidate_slots(schedule, duration_minutes)
    else:
        candidates = generate_candidate_slots(hours, duration_minutes, hours.availability_id)
    return filter_valid_slots(
        candidates,
        target_date,
        schedule,
        availability=availability,
        breaks=breaks,
        blocked_slots=blocked_slots,
        appointments=appointments,
        buffer_minutes=buffer_minutes,
        now=now,
        keep_rejected=preview,
    )


def is_slot_bookable(
    start_time: str,
    duration_minutes: int,
    target_date: str,
    schedule: ProviderSchedule,
    *,
    availability: Iterable[AvailabilityEntry] = (),
    breaks: Iterable[Break] = (),
    blocked_slots: Iterable[BlockedSlot] = (),
    appointments: Iterable[Appointment] = (),
    buffer_minutes: int = 0,
    now: datetime,
    ignore_appointment_id: Optional[str] = None,
) -> bool:
    """
    Check one start time against the same rules as filter_valid_slots.
    The start must also sit on the day's slot grid.
    """
    availability = list(availability)
    hours = day_hours(schedule, target_date, availability)
    if hours is None:
        return False
    start = to_minutes(start_time)
    if (start - to_minutes(hours.start_time)) % hours.slot_interval_minutes:
        return False
    if start + duration_minutes >= MINUTES_PER_DAY:
        return False
    slot = TimeSlot(start_time=start_time, end_time=format_minutes(start + duration_minutes))
    valid = filter_valid_slots(
        [slot],
        target_date,
        schedule,
        availability=availability,
        breaks=breaks,
        blocked_slots=blocked_slots,
        appointments=appointments,
        buffer_minutes=buffer_minutes,
        now=now,
        ignore_appointment_id=ignore_appointment_id,
    )
    return bool(valid)


def filter_time_of_day(slots: list[TimeSlot], period: Optional[str]) -> list[TimeSlot]:
    """Keep slots starting in morning (0-12), afternoon (12-18) or evening (18-24)."""
    if not period:
        return slots
    if period not in TIME_OF_DAY:
        raise ValueError(f"Unknown time of day: {period}")
    first_hour, last_hour = TIME_OF_DAY[period]
    return [s for s in slots if first_hour <= _parse_time(s.start_time)[0] < last_hour]
