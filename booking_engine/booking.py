"""Booking transaction manager: atomic check-and-reserve of a slot."""

import logging
from datetime import datetime
from typing import Callable, Optional

from booking_engine.cache import AvailabilityCache
from booking_engine.collaborators import CollaboratorDispatcher
from booking_engine.errors import IllegalTransitionError, SlotConflictError
from booking_engine.locks import LockRegistry, appointment_key, day_key
from booking_engine.scheduler import format_minutes, is_slot_bookable, to_minutes
from booking_engine.schema import Actor, Appointment, AppointmentStatus
from booking_engine.store import BookingStore, ScheduleStore, ServiceCatalog

logger = logging.getLogger(__name__)

# clients may only move appointments the provider has not confirmed yet
RESCHEDULABLE_STATUSES = {
    Actor.CLIENT: (AppointmentStatus.PENDING,),
    Actor.PROVIDER: (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
    Actor.SYSTEM: (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
}
RESCHEDULE_ATTEMPTS = 3


class BookingTransactionManager:
    """
    Sole write path for new appointments.

    Every reservation re-checks its slot against the freshest stored state
    while holding the (provider, date) lock, so at most one non-canceled
    appointment can ever occupy an interval.
    """

    def __init__(
        self,
        schedules: ScheduleStore,
        services: ServiceCatalog,
        bookings: BookingStore,
        locks: LockRegistry,
        cache: AvailabilityCache,
        dispatcher: CollaboratorDispatcher,
        clock: Callable[[], datetime],
    ) -> None:
        self.schedules = schedules
        self.services = services
        self.bookings = bookings
        self.locks = locks
        self.cache = cache
        self.dispatcher = dispatcher
        self.clock = clock

    def _is_bookable(
        self,
        provider_id: str,
        date: str,
        start_time: str,
        duration_minutes: int,
        buffer_minutes: int,
        ignore_appointment_id: Optional[str] = None,
    ) -> bool:
        schedule = self.schedules.get_schedule(provider_id)
        return is_slot_bookable(
            start_time,
            duration_minutes,
            date,
            schedule,
            availability=self.schedules.list_availability(provider_id),
            breaks=self.schedules.list_breaks(provider_id),
            blocked_slots=self.schedules.list_blocked_slots(provider_id, date),
            appointments=self.bookings.list_for(provider_id, date),
            buffer_minutes=buffer_minutes,
            now=self.clock(),
            ignore_appointment_id=ignore_appointment_id,
        )

    def check_slot(self, provider_id: str, service_id: str, date: str, start_time: str) -> bool:
        """Read-only check; a True answer is no reservation."""
        service = self.services.service_for(provider_id, service_id)
        return self._is_bookable(
            provider_id, date, start_time, service.duration_minutes, service.buffer_time
        )

    def reserve(
        self,
        provider_id: str,
        client_id: str,
        service_id: str,
        date: str,
        start_time: str,
        notes: str = "",
        discount: Optional[int] = None,
    ) -> Appointment:
        """Create a pending appointment, or raise SlotConflictError."""
        service = self.services.service_for(provider_id, service_id)
        start = to_minutes(start_time)

        with self.locks.hold(day_key(provider_id, date)):
            if not self._is_bookable(
                provider_id, date, start_time, service.duration_minutes, service.buffer_time
            ):
                logger.info(
                    "Reservation conflict: provider=%s date=%s start=%s client=%s",
                    provider_id, date, start_time, client_id,
                )
                raise SlotConflictError(provider_id, date, start_time)

            appointment = Appointment(
                client_id=client_id,
                provider_id=provider_id,
                service_id=service_id,
                date=date,
                start_time=start_time,
                end_time=format_minutes(start + service.duration_minutes),
                buffer_minutes=service.buffer_time,
                status=AppointmentStatus.PENDING,
                discount=discount,
                original_price=service.price,
                discount_amount=round(service.price * (discount or 0) / 100, 2),
                notes=notes,
            )
            self.bookings.insert(appointment)
            self.cache.invalidate(provider_id, date)

        logger.info(
            "Reserved appointment %s: provider=%s date=%s %s-%s client=%s",
            appointment.id, provider_id, date, appointment.start_time, appointment.end_time, client_id,
        )
        self.dispatcher.appointment_created(appointment)
        return appointment

    def reschedule(
        self,
        appointment_id: str,
        new_date: str,
        new_start_time: str,
        actor: Actor,
    ) -> Appointment:
        """
        Move an appointment to another slot of the same provider. Clients can move
        pending appointments; provider and system can also move confirmed ones.
        Holds both days' locks and the appointment's lock while checking and saving.
        """
        actor = Actor(actor)
        for _ in range(RESCHEDULE_ATTEMPTS):
            seen = self.bookings.get(appointment_id)
            keys = (
                appointment_key(appointment_id),
                day_key(seen.provider_id, seen.date),
                day_key(seen.provider_id, new_date),
            )
            with self.locks.hold(*keys):
                appt = self.bookings.get(appointment_id)
                if appt.date != seen.date:
                    # moved by someone else before we got the locks
                    continue
                if appt.status not in RESCHEDULABLE_STATUSES.get(actor, ()):
                    raise IllegalTransitionError(
                        appt.status.value,
                        "rescheduled",
                        f"{actor.value} may not reschedule a {appt.status.value} appointment",
                    )

                duration = to_minutes(appt.end_time) - to_minutes(appt.start_time)
                if not self._is_bookable(
                    appt.provider_id,
                    new_date,
                    new_start_time,
                    duration,
                    appt.buffer_minutes,
                    ignore_appointment_id=appt.id,
                ):
                    raise SlotConflictError(appt.provider_id, new_date, new_start_time)

                old_date, old_start = appt.date, appt.start_time
                appt.date = new_date
                appt.start_time = new_start_time
                appt.end_time = format_minutes(to_minutes(new_start_time) + duration)
                self.bookings.save(appt)
                self.cache.invalidate(appt.provider_id, old_date)
                self.cache.invalidate(appt.provider_id, new_date)

            logger.info(
                "Rescheduled appointment %s by %s: %s %s -> %s %s",
                appt.id, actor.value, old_date, old_start, new_date, new_start_time,
            )
            self.dispatcher.rescheduled(appt, old_date, old_start)
            return appt

        raise SlotConflictError(seen.provider_id, new_date, new_start_time)
