"""Appointment lifecycle: status transitions, payment status and reviews."""

import logging

from booking_engine.cache import AvailabilityCache
from booking_engine.collaborators import CollaboratorDispatcher
from booking_engine.errors import (
    IllegalTransitionError,
    ReviewAlreadyExistsError,
    ReviewNotAllowedError,
)
from booking_engine.locks import LockRegistry, appointment_key
from booking_engine.schema import (
    Actor,
    Appointment,
    AppointmentStatus,
    HistoryEntry,
    PaymentStatus,
    Review,
)
from booking_engine.store import BookingStore

logger = logging.getLogger(__name__)

S = AppointmentStatus

# system acts with provider rights (automation, admin tooling)
PROVIDER_SIDE = frozenset({Actor.PROVIDER, Actor.SYSTEM})
ANYONE = frozenset(Actor)

TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentStatus], frozenset[Actor]] = {
    (S.PENDING, S.CONFIRMED): PROVIDER_SIDE,
    (S.PENDING, S.EXECUTING): PROVIDER_SIDE,
    (S.CONFIRMED, S.EXECUTING): PROVIDER_SIDE,
    (S.EXECUTING, S.COMPLETED): PROVIDER_SIDE,
    (S.EXECUTING, S.CONFIRMED): PROVIDER_SIDE,
    (S.PENDING, S.CANCELED): ANYONE,
    (S.CONFIRMED, S.CANCELED): ANYONE,
    (S.EXECUTING, S.CANCELED): PROVIDER_SIDE,
    (S.PENDING, S.NO_SHOW): PROVIDER_SIDE,
    (S.CONFIRMED, S.NO_SHOW): PROVIDER_SIDE,
    (S.EXECUTING, S.NO_SHOW): PROVIDER_SIDE,
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELED})

# statuses that free the slot for new reservations
RELEASING_STATUSES = frozenset({S.CANCELED})

PAYMENT_TRANSITIONS = frozenset(
    {
        (PaymentStatus.PENDING, PaymentStatus.PAID),
        (PaymentStatus.PENDING, PaymentStatus.FAILED),
        (PaymentStatus.PAID, PaymentStatus.REFUNDED),
    }
)


def can_transition(current: AppointmentStatus, target: AppointmentStatus, actor: Actor) -> bool:
    return actor in TRANSITIONS.get((current, target), frozenset())


class AppointmentStateMachine:
    def __init__(
        self,
        bookings: BookingStore,
        locks: LockRegistry,
        cache: AvailabilityCache,
        dispatcher: CollaboratorDispatcher,
    ) -> None:
        self.bookings = bookings
        self.locks = locks
        self.cache = cache
        self.dispatcher = dispatcher

    def transition(
        self,
        appointment_id: str,
        target: AppointmentStatus,
        actor: Actor,
    ) -> Appointment:
        """
        Apply one status change from the transition table.
        Raises IllegalTransitionError (state untouched) for anything else.
        """
        target = AppointmentStatus(target)
        actor = Actor(actor)

        with self.locks.hold(appointment_key(appointment_id)):
            appt = self.bookings.get(appointment_id)
            current = appt.status
            if current in TERMINAL_STATUSES:
                raise IllegalTransitionError(current.value, target.value, "appointment is closed")
            if (current, target) not in TRANSITIONS:
                raise IllegalTransitionError(current.value, target.value, "transition not allowed")
            if not can_transition(current, target, actor):
                raise IllegalTransitionError(
                    current.value, target.value, f"{actor.value} may not perform this transition"
                )

            appt.status = target
            appt.history.append(HistoryEntry(from_status=current, to_status=target, actor=actor))
            self.bookings.save(appt)

        if target in RELEASING_STATUSES:
            self.cache.invalidate(appt.provider_id, appt.date)
        if current == S.EXECUTING and target == S.CONFIRMED:
            logger.warning("Appointment %s rolled back from executing to confirmed by %s", appt.id, actor.value)
        logger.info("Appointment %s: %s -> %s by %s", appt.id, current.value, target.value, actor.value)
        self.dispatcher.status_changed(appt, current, actor)
        return appt

    def set_payment_status(
        self,
        appointment_id: str,
        status: PaymentStatus,
        actor: Actor = Actor.SYSTEM,
    ) -> Appointment:
        """Move the payment axis. Never touches the appointment status."""
        status = PaymentStatus(status)
        actor = Actor(actor)

        with self.locks.hold(appointment_key(appointment_id)):
            appt = self.bookings.get(appointment_id)
            current = appt.payment_status
            if actor == Actor.CLIENT:
                raise IllegalTransitionError(current.value, status.value, "clients cannot set payment status")
            if status == PaymentStatus.PAID_EXTERNALLY:
                if appt.status == S.CANCELED:
                    raise IllegalTransitionError(current.value, status.value, "appointment is canceled")
                if current == PaymentStatus.PAID_EXTERNALLY:
                    raise IllegalTransitionError(current.value, status.value, "already paid externally")
            elif (current, status) not in PAYMENT_TRANSITIONS:
                raise IllegalTransitionError(current.value, status.value, "payment transition not allowed")

            appt.payment_status = status
            self.bookings.save(appt)

        logger.info("Appointment %s payment: %s -> %s by %s", appt.id, current.value, status.value, actor.value)
        self.dispatcher.payment_status_changed(appt, current.value)
        return appt

    def add_review(
        self,
        appointment_id: str,
        client_id: str,
        rating: int,
        comment: str | None = None,
    ) -> Appointment:
        with self.locks.hold(appointment_key(appointment_id)):
            appt = self.bookings.get(appointment_id)
            if appt.client_id != client_id:
                raise ReviewNotAllowedError(appointment_id, "only the appointment's client can review it")
            if appt.status != S.COMPLETED:
                raise ReviewNotAllowedError(appointment_id, f"status is {appt.status.value}, not completed")
            if appt.review is not None:
                raise ReviewAlreadyExistsError(appointment_id)
            appt.review = Review(rating=rating, comment=comment)
            self.bookings.save(appt)

        logger.info("Review %d/5 added to appointment %s", rating, appointment_id)
        return appt
