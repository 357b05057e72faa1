"""Domain errors raised by the availability and booking engine."""


class BookingError(Exception):
    """Base class for every error the engine reports to its callers."""


class ScheduleNotFoundError(BookingError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"No working hours configured for provider {provider_id}")


class ServiceNotFoundError(BookingError):
    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"Service {service_id} not found")


class AppointmentNotFoundError(BookingError):
    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")


class BreakNotFoundError(BookingError):
    def __init__(self, break_id: str) -> None:
        self.break_id = break_id
        super().__init__(f"Break {break_id} not found")


class SlotConflictError(BookingError):
    """The requested slot is no longer bookable; fetch availability again and retry."""

    def __init__(self, provider_id: str, date: str, start_time: str) -> None:
        self.provider_id = provider_id
        self.date = date
        self.start_time = start_time
        super().__init__(
            f"Slot {date} {start_time} is no longer available for provider {provider_id}"
        )


class IllegalTransitionError(BookingError):
    """A status (or payment status) change that the transition table does not allow."""

    def __init__(self, current: str, target: str, reason: str = "") -> None:
        self.current = current
        self.target = target
        self.reason = reason
        msg = f"Cannot move from {current!r} to {target!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ReviewNotAllowedError(BookingError):
    def __init__(self, appointment_id: str, reason: str) -> None:
        self.appointment_id = appointment_id
        self.reason = reason
        super().__init__(f"Cannot review appointment {appointment_id}: {reason}")


class ReviewAlreadyExistsError(BookingError):
    def __init__(self, appointment_id: str) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} already has a review")


class BlockedSlotNotFoundError(BookingError):
    def __init__(self, blocked_slot_id: str) -> None:
        self.blocked_slot_id = blocked_slot_id
        super().__init__(f"Blocked slot {blocked_slot_id} not found")


class AvailabilityNotFoundError(BookingError):
    def __init__(self, availability_id: str) -> None:
        self.availability_id = availability_id
        super().__init__(f"Availability entry {availability_id} not found")
