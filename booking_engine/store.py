"""In-memory schedule, service and booking stores.

Each store guards its data with an RLock and hands out copies, so callers
never mutate stored state behind the store's back. A database backed store
only needs to offer the same methods.
"""

import logging
import threading
from collections import defaultdict
from typing import Optional

from booking_engine.errors import (
    AppointmentNotFoundError,
    AvailabilityNotFoundError,
    BlockedSlotNotFoundError,
    BreakNotFoundError,
    ScheduleNotFoundError,
    ServiceNotFoundError,
)
from booking_engine.scheduler import blocks_for_date
from booking_engine.schema import (
    Appointment,
    AppointmentStatus,
    AvailabilityEntry,
    BlockedSlot,
    Break,
    ProviderSchedule,
    ProviderServiceTerms,
    Service,
)

logger = logging.getLogger(__name__)


class ScheduleStore:
    """Working hours, availability entries, breaks and blocked slots per provider."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._schedules: dict[str, ProviderSchedule] = {}
        self._availability: dict[str, tuple[str, AvailabilityEntry]] = {}
        self._breaks: dict[str, tuple[str, Break]] = {}
        self._blocked: dict[str, tuple[str, BlockedSlot]] = {}

    def set_schedule(self, provider_id: str, schedule: ProviderSchedule) -> ProviderSchedule:
        with self._lock:
            self._schedules[provider_id] = schedule.model_copy(deep=True)
        logger.info(
            "Schedule set for provider %s: days=%s %s-%s every %s min",
            provider_id,
            schedule.working_days,
            schedule.start_time,
            schedule.end_time,
            schedule.slot_interval_minutes,
        )
        return schedule

    def get_schedule(self, provider_id: str) -> ProviderSchedule:
        with self._lock:
            schedule = self._schedules.get(provider_id)
            if schedule is None:
                raise ScheduleNotFoundError(provider_id)
            return schedule.model_copy(deep=True)

    def set_availability(self, provider_id: str, entry: AvailabilityEntry) -> AvailabilityEntry:
        """Store an entry, replacing the provider's entry for the same weekday or date."""
        with self._lock:
            replaced = [
                entry_id
                for entry_id, (owner, existing) in self._availability.items()
                if owner == provider_id
                and (existing.day_of_week, existing.date) == (entry.day_of_week, entry.date)
            ]
            for entry_id in replaced:
                del self._availability[entry_id]
            self._availability[entry.id] = (provider_id, entry.model_copy())
        return entry

    def delete_availability(self, availability_id: str) -> tuple[str, AvailabilityEntry]:
        """Remove an entry; returns the owning provider id and the entry."""
        with self._lock:
            found = self._availability.pop(availability_id, None)
        if found is None:
            raise AvailabilityNotFoundError(availability_id)
        return found

    def list_availability(self, provider_id: str) -> list[AvailabilityEntry]:
        with self._lock:
            return [e.model_copy() for owner, e in self._availability.values() if owner == provider_id]

    def add_break(self, provider_id: str, brk: Break) -> Break:
        with self._lock:
            self._breaks[brk.id] = (provider_id, brk.model_copy(deep=True))
        return brk

    def delete_break(self, break_id: str) -> str:
        """Remove a break; returns the owning provider id."""
        with self._lock:
            entry = self._breaks.pop(break_id, None)
        if entry is None:
            raise BreakNotFoundError(break_id)
        return entry[0]

    def list_breaks(self, provider_id: str) -> list[Break]:
        with self._lock:
            return [b.model_copy(deep=True) for owner, b in self._breaks.values() if owner == provider_id]

    def add_blocked_slot(self, provider_id: str, blocked: BlockedSlot) -> BlockedSlot:
        with self._lock:
            self._blocked[blocked.id] = (provider_id, blocked.model_copy())
        return blocked

    def delete_blocked_slot(self, blocked_slot_id: str) -> tuple[str, BlockedSlot]:
        """Unblock; returns the owning provider id and the removed slot."""
        with self._lock:
            found = self._blocked.pop(blocked_slot_id, None)
        if found is None:
            raise BlockedSlotNotFoundError(blocked_slot_id)
        return found

    def list_blocked_slots(self, provider_id: str, date: Optional[str] = None) -> list[BlockedSlot]:
        with self._lock:
            return [
                s.model_copy()
                for owner, s in self._blocked.values()
                if owner == provider_id and (date is None or s.date == date)
            ]

    def blocks_for(self, provider_id: str, date: str) -> list[BlockedSlot]:
        """Every blocking interval of the provider on that date."""
        return blocks_for_date(
            date, self.list_breaks(provider_id), self.list_blocked_slots(provider_id, date)
        )


class ServiceCatalog:
    """Catalogue services plus each provider's own terms for them."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._services: dict[str, Service] = {}
        self._terms: dict[tuple[str, str], ProviderServiceTerms] = {}

    def add_service(self, service: Service) -> Service:
        with self._lock:
            self._services[service.id] = service.model_copy()
        return service

    def get_service(self, service_id: str) -> Service:
        with self._lock:
            service = self._services.get(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)
        return service.model_copy()

    def set_provider_terms(
        self,
        provider_id: str,
        service_id: str,
        terms: ProviderServiceTerms,
    ) -> ProviderServiceTerms:
        with self._lock:
            if service_id not in self._services:
                raise ServiceNotFoundError(service_id)
            self._terms[(provider_id, service_id)] = terms.model_copy()
        logger.info("Provider %s terms for service %s: %s", provider_id, service_id, terms.model_dump(exclude_none=True))
        return terms

    def service_for(self, provider_id: str, service_id: str) -> Service:
        """The service as this provider offers it: its own duration, buffer and price win."""
        with self._lock:
            service = self.get_service(service_id)
            terms = self._terms.get((provider_id, service_id))
        if terms is None:
            return service
        return service.model_copy(update=terms.model_dump(exclude_none=True))


class BookingStore:
    """Appointments indexed by id and by (provider_id, date)."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._appointments: dict[str, Appointment] = {}
        self._by_day: dict[tuple[str, str], list[str]] = defaultdict(list)

    def insert(self, appointment: Appointment) -> Appointment:
        with self._lock:
            if appointment.id in self._appointments:
                raise ValueError(f"Appointment {appointment.id} already exists")
            self._appointments[appointment.id] = appointment.model_copy(deep=True)
            self._by_day[(appointment.provider_id, appointment.date)].append(appointment.id)
        return appointment

    def get(self, appointment_id: str) -> Appointment:
        with self._lock:
            appt = self._appointments.get(appointment_id)
            if appt is None:
                raise AppointmentNotFoundError(appointment_id)
            return appt.model_copy(deep=True)

    def save(self, appointment: Appointment) -> Appointment:
        """Replace a stored appointment, re-indexing it if its date moved."""
        with self._lock:
            old = self._appointments.get(appointment.id)
            if old is None:
                raise AppointmentNotFoundError(appointment.id)
            if (old.provider_id, old.date) != (appointment.provider_id, appointment.date):
                self._by_day[(old.provider_id, old.date)].remove(appointment.id)
                self._by_day[(appointment.provider_id, appointment.date)].append(appointment.id)
            self._appointments[appointment.id] = appointment.model_copy(deep=True)
        return appointment

    def list_for(
        self,
        provider_id: str,
        date: str,
        include_canceled: bool = False,
    ) -> list[Appointment]:
        with self._lock:
            ids = list(self._by_day.get((provider_id, date), []))
            appts = [self._appointments[i].model_copy(deep=True) for i in ids]
        if include_canceled:
            return appts
        return [a for a in appts if a.status != AppointmentStatus.CANCELED]

    def list_for_provider(self, provider_id: str) -> list[Appointment]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._appointments.values() if a.provider_id == provider_id]

    def list_for_client(self, client_id: str) -> list[Appointment]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._appointments.values() if a.client_id == client_id]
