"""Availability & booking engine: one object wiring stores, cache, scorer and writers."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date as date_cls
from datetime import datetime
from typing import Callable, Optional

from booking_engine.booking import BookingTransactionManager
from booking_engine.cache import AvailabilityCache
from booking_engine.collaborators import (
    CollaboratorDispatcher,
    WebhookNotifier,
    WebhookPaymentCollaborator,
)
from booking_engine.config import Settings, get_settings
from booking_engine.locks import LockRegistry
from booking_engine.scheduler import (
    business_now,
    compute_slots,
    filter_time_of_day,
)
from booking_engine.schema import (
    Actor,
    Appointment,
    AppointmentStatus,
    AvailabilityEntry,
    BlockedSlot,
    Break,
    PaymentStatus,
    ProviderSchedule,
    ProviderServiceTerms,
    Service,
    TimeSlot,
)
from booking_engine.scorer import (
    HeuristicScorer,
    LLMScorer,
    ScoringContext,
    SlotScorer,
    apply_scorer,
    booking_density,
)
from booking_engine.store import BookingStore, ScheduleStore, ServiceCatalog
from booking_engine.state_machine import AppointmentStateMachine

logger = logging.getLogger(__name__)

MODES = ("simple", "smart")


def build_scorer(settings: Settings) -> Optional[SlotScorer]:
    if settings.SCORER == "llm":
        return LLMScorer()
    if settings.SCORER == "heuristic":
        return HeuristicScorer()
    return None


def build_dispatcher(settings: Settings) -> CollaboratorDispatcher:
    notifier = None
    payments = None
    if settings.NOTIFY_WEBHOOK_URL:
        notifier = WebhookNotifier(settings.NOTIFY_WEBHOOK_URL, settings.WEBHOOK_TIMEOUT_SECONDS)
    if settings.PAYMENT_WEBHOOK_URL:
        payments = WebhookPaymentCollaborator(settings.PAYMENT_WEBHOOK_URL, settings.WEBHOOK_TIMEOUT_SECONDS)
    executor = ThreadPoolExecutor(
        max_workers=settings.COLLABORATOR_WORKERS, thread_name_prefix="collaborators"
    )
    return CollaboratorDispatcher(notifier, payments, executor)


class BookingEngine:
    """Entry point used by the HTTP layer (and by anything else embedding the engine)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        scorer: Optional[SlotScorer] = None,
        dispatcher: Optional[CollaboratorDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.scorer = scorer
        self.clock = clock or (lambda: business_now(self.settings.TIMEZONE))

        self.schedules = ScheduleStore()
        self.services = ServiceCatalog()
        self.bookings = BookingStore()
        self.locks = LockRegistry()
        self.cache = AvailabilityCache(ttl_seconds=self.settings.CACHE_TTL_SECONDS)
        self.dispatcher = dispatcher or CollaboratorDispatcher()

        self.transactions = BookingTransactionManager(
            self.schedules,
            self.services,
            self.bookings,
            self.locks,
            self.cache,
            self.dispatcher,
            self.clock,
        )
        self.lifecycle = AppointmentStateMachine(self.bookings, self.locks, self.cache, self.dispatcher)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "BookingEngine":
        settings = settings or get_settings()
        return cls(
            settings,
            scorer=build_scorer(settings),
            dispatcher=build_dispatcher(settings),
        )

    # --- schedule management (provider writes, engine reads) ---

    def set_schedule(self, provider_id: str, schedule: ProviderSchedule) -> ProviderSchedule:
        self.schedules.set_schedule(provider_id, schedule)
        self.cache.invalidate(provider_id)
        return schedule

    def add_break(self, provider_id: str, brk: Break) -> Break:
        self.schedules.add_break(provider_id, brk)
        self.cache.invalidate(provider_id, None if brk.is_recurring else brk.date)
        return brk

    def set_availability(self, provider_id: str, entry: AvailabilityEntry) -> AvailabilityEntry:
        self.schedules.set_availability(provider_id, entry)
        self.cache.invalidate(provider_id, entry.date)
        return entry

    def delete_availability(self, availability_id: str) -> None:
        provider_id, entry = self.schedules.delete_availability(availability_id)
        self.cache.invalidate(provider_id, entry.date)

    def list_availability(self, provider_id: str) -> list[AvailabilityEntry]:
        return self.schedules.list_availability(provider_id)

    def delete_break(self, break_id: str) -> None:
        provider_id = self.schedules.delete_break(break_id)
        self.cache.invalidate(provider_id)

    def list_breaks(self, provider_id: str) -> list[Break]:
        return self.schedules.list_breaks(provider_id)

    def add_blocked_slot(self, provider_id: str, blocked: BlockedSlot) -> BlockedSlot:
        self.schedules.add_blocked_slot(provider_id, blocked)
        self.cache.invalidate(provider_id, blocked.date)
        return blocked

    def delete_blocked_slot(self, blocked_slot_id: str) -> None:
        provider_id, blocked = self.schedules.delete_blocked_slot(blocked_slot_id)
        self.cache.invalidate(provider_id, blocked.date)

    def list_blocked_slots(self, provider_id: str, date: Optional[str] = None) -> list[BlockedSlot]:
        return self.schedules.list_blocked_slots(provider_id, date)

    def add_service(self, service: Service) -> Service:
        return self.services.add_service(service)

    def set_provider_terms(
        self,
        provider_id: str,
        service_id: str,
        terms: ProviderServiceTerms,
    ) -> ProviderServiceTerms:
        self.services.set_provider_terms(provider_id, service_id, terms)
        self.cache.invalidate(provider_id)
        return terms

    # --- availability (read only) ---

    def resolve_duration(
        self,
        provider_id: str,
        service_id: Optional[str],
        duration: Optional[int] = None,
    ) -> tuple[int, int]:
        """
        (duration, buffer) for a request: explicit duration, else the provider's
        duration for the service, else the service's, else the default.
        """
        buffer = 0
        if service_id is not None:
            service = self.services.service_for(provider_id, service_id)
            buffer = service.buffer_time
            duration = duration or service.duration_minutes
        return duration or self.settings.DEFAULT_SERVICE_DURATION_MINUTES, buffer

    def availability(
        self,
        provider_id: str,
        date: str,
        service_id: Optional[str] = None,
        duration: Optional[int] = None,
        mode: str = "simple",
        preview: bool = False,
        time_of_day: Optional[str] = None,
    ) -> list[TimeSlot]:
        """
        Bookable slots for a provider on a date.

        duration overrides the service's duration; without either the configured
        default is used. mode="smart" annotates the slots with the configured scorer.
        preview returns the whole grid with rejected slots flagged instead of dropped.
        """
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}")

        duration, buffer = self.resolve_duration(provider_id, service_id, duration)

        now = self.clock()
        self.cache.prune(now.date().isoformat())
        token = self.cache.token(provider_id, date)
        schedule = self.schedules.get_schedule(provider_id)
        # today's answer changes with the clock; only later dates are cached
        cacheable = not preview and date_cls.fromisoformat(date) > now.date()
        key = self.cache.make_key(provider_id, date, duration, buffer)

        slots = self.cache.get(key) if cacheable else None
        if slots is None:
            slots = compute_slots(
                schedule,
                date,
                duration,
                availability=self.schedules.list_availability(provider_id),
                breaks=self.schedules.list_breaks(provider_id),
                blocked_slots=self.schedules.list_blocked_slots(provider_id, date),
                appointments=self.bookings.list_for(provider_id, date),
                buffer_minutes=buffer,
                now=now,
                preview=preview,
            )
            logger.debug("Computed %d slots for provider %s on %s (%s min)", len(slots), provider_id, date, duration)
            if cacheable:
                self.cache.set(key, slots, token)

        slots = filter_time_of_day(slots, time_of_day)

        if mode == "smart" and not preview:
            context = ScoringContext(
                provider_id=provider_id,
                date=date,
                duration_minutes=duration,
                hour_density=booking_density(self.bookings.list_for_provider(provider_id)),
                time_of_day=time_of_day,
            )
            return apply_scorer(self.scorer, slots, context)
        return slots

    def check_slot(self, provider_id: str, service_id: str, date: str, start_time: str) -> bool:
        return self.transactions.check_slot(provider_id, service_id, date, start_time)

    # --- writes ---

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
        return self.transactions.reserve(
            provider_id, client_id, service_id, date, start_time, notes=notes, discount=discount
        )

    def reschedule(self, appointment_id: str, date: str, start_time: str, actor: Actor) -> Appointment:
        return self.transactions.reschedule(appointment_id, date, start_time, actor)

    def transition(self, appointment_id: str, target: AppointmentStatus, actor: Actor) -> Appointment:
        return self.lifecycle.transition(appointment_id, target, actor)

    def set_payment_status(
        self,
        appointment_id: str,
        status: PaymentStatus,
        actor: Actor = Actor.SYSTEM,
    ) -> Appointment:
        return self.lifecycle.set_payment_status(appointment_id, status, actor)

    def add_review(
        self,
        appointment_id: str,
        client_id: str,
        rating: int,
        comment: Optional[str] = None,
    ) -> Appointment:
        return self.lifecycle.add_review(appointment_id, client_id, rating, comment)

    def get_appointment(self, appointment_id: str) -> Appointment:
        return self.bookings.get(appointment_id)

    def shutdown(self) -> None:
        self.dispatcher.shutdown()
