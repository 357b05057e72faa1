"""Notification and payment collaborators.

They are called after a transition has been committed. Calls run on a
background executor and their failures are logged, never raised back
into the engine.
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Optional, Protocol

import httpx

from booking_engine.schema import Actor, Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

PAYMENT_TRIGGER_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED)


class Notifier(Protocol):
    def notify(self, event: str, appointment: Appointment, payload: dict[str, Any]) -> None:
        ...


class PaymentCollaborator(Protocol):
    def on_status_change(self, appointment: Appointment, status: AppointmentStatus) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes the event to the log."""

    def notify(self, event: str, appointment: Appointment, payload: dict[str, Any]) -> None:
        logger.info("Notification %s for appointment %s: %s", event, appointment.id, payload)


class LoggingPaymentCollaborator:
    def on_status_change(self, appointment: Appointment, status: AppointmentStatus) -> None:
        logger.info(
            "Payment hook for appointment %s on %s (payment %s)",
            appointment.id,
            status.value,
            appointment.payment_status.value,
        )


class _WebhookPoster:
    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def _post(self, body: dict[str, Any]) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(self.url, json=body)
            resp.raise_for_status()


class WebhookNotifier(_WebhookPoster):
    """POSTs every event as JSON to a configured URL."""

    def notify(self, event: str, appointment: Appointment, payload: dict[str, Any]) -> None:
        self._post(
            {
                "event": event,
                "appointment": appointment.model_dump(mode="json"),
                "payload": payload,
            }
        )


class WebhookPaymentCollaborator(_WebhookPoster):
    """Asks the payment service to capture/release on confirmed and completed."""

    def on_status_change(self, appointment: Appointment, status: AppointmentStatus) -> None:
        self._post(
            {
                "appointment_id": appointment.id,
                "status": status.value,
                "payment_status": appointment.payment_status.value,
                "amount": round(appointment.original_price - appointment.discount_amount, 2),
            }
        )


class CollaboratorDispatcher:
    """Fire-and-forget fan-out to the collaborators."""

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        payments: Optional[PaymentCollaborator] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.notifier = notifier or LoggingNotifier()
        self.payments = payments or LoggingPaymentCollaborator()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="collaborators"
        )

    def _run(self, name: str, fn, *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Collaborator %s failed; the committed change stands", name)

    def _submit(self, name: str, fn, *args: Any) -> None:
        try:
            self.executor.submit(self._run, name, fn, *args)
        except RuntimeError:
            # executor already shut down
            logger.exception("Could not schedule collaborator %s", name)

    def appointment_created(self, appointment: Appointment) -> None:
        self._submit(
            "notifier",
            self.notifier.notify,
            "appointment.created",
            appointment.model_copy(deep=True),
            {"status": appointment.status.value},
        )

    def status_changed(
        self,
        appointment: Appointment,
        previous: AppointmentStatus,
        actor: Actor,
    ) -> None:
        snapshot = appointment.model_copy(deep=True)
        self._submit(
            "notifier",
            self.notifier.notify,
            "appointment.status_changed",
            snapshot,
            {"from": previous.value, "to": appointment.status.value, "actor": actor.value},
        )
        if appointment.status in PAYMENT_TRIGGER_STATUSES:
            self._submit("payments", self.payments.on_status_change, snapshot, appointment.status)

    def payment_status_changed(self, appointment: Appointment, previous: str) -> None:
        self._submit(
            "notifier",
            self.notifier.notify,
            "appointment.payment_status_changed",
            appointment.model_copy(deep=True),
            {"from": previous, "to": appointment.payment_status.value},
        )

    def rescheduled(self, appointment: Appointment, old_date: str, old_start: str) -> None:
        self._submit(
            "notifier",
            self.notifier.notify,
            "appointment.rescheduled",
            appointment.model_copy(deep=True),
            {
                "from": {"date": old_date, "start_time": old_start},
                "to": {"date": appointment.date, "start_time": appointment.start_time},
            },
        )

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)
