"""Tests for check-and-reserve, concurrency and rescheduling."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from booking_engine.errors import (
    AppointmentNotFoundError,
    IllegalTransitionError,
    ScheduleNotFoundError,
    ServiceNotFoundError,
    SlotConflictError,
)
from booking_engine.scheduler import to_minutes
from booking_engine.schema import (
    Actor,
    AppointmentStatus,
    AvailabilityEntry,
    BlockedSlot,
    PaymentStatus,
    ProviderServiceTerms,
    Service,
)
from conftest import MONDAY, NEXT_MONDAY, PROVIDER, SUNDAY


def _reserve(engine, start="14:00", client="client-1", date=MONDAY, **kwargs):
    return engine.reserve(PROVIDER, client, "haircut", date, start, **kwargs)


def test_reserve_creates_pending_appointment(engine, notifier):
    appt = _reserve(engine, notes="First visit")

    assert appt.status == AppointmentStatus.PENDING
    assert appt.payment_status == PaymentStatus.PENDING
    assert appt.start_time == "14:00"
    assert appt.end_time == "15:00"
    assert appt.notes == "First visit"
    assert engine.get_appointment(appt.id) == appt

    event, snapshot, _ = notifier.notify.call_args.args
    assert event == "appointment.created"
    assert snapshot.id == appt.id


def test_reserve_computes_discount(engine):
    appt = _reserve(engine, discount=15)
    assert appt.original_price == 100.0
    assert appt.discount == 15
    assert appt.discount_amount == 15.0


def test_reserve_records_service_buffer(engine):
    engine.add_service(Service(id="color", name="Color", duration_minutes=60, buffer_time=30, price=80))
    engine.reserve(PROVIDER, "client-1", "color", MONDAY, "09:00")

    # buffer keeps 10:00 busy for the next client
    with pytest.raises(SlotConflictError):
        _reserve(engine, start="10:00", client="client-2")
    assert _reserve(engine, start="10:30", client="client-2")


def test_second_reservation_of_same_slot_conflicts(engine):
    _reserve(engine, client="client-1")
    with pytest.raises(SlotConflictError) as exc_info:
        _reserve(engine, client="client-2")
    assert exc_info.value.start_time == "14:00"


def test_overlapping_reservation_conflicts(engine):
    _reserve(engine, start="14:00")
    with pytest.raises(SlotConflictError):
        _reserve(engine, start="14:30", client="client-2")
    assert _reserve(engine, start="15:00", client="client-2").start_time == "15:00"


def test_reserve_rejects_invalid_slots(engine):
    with pytest.raises(SlotConflictError):
        _reserve(engine, date=SUNDAY)
    with pytest.raises(SlotConflictError):
        _reserve(engine, start="17:30")
    with pytest.raises(SlotConflictError):
        _reserve(engine, start="14:15")


def test_reserve_unknown_references(engine):
    with pytest.raises(ServiceNotFoundError):
        engine.reserve(PROVIDER, "client-1", "massage", MONDAY, "14:00")
    with pytest.raises(ScheduleNotFoundError):
        engine.reserve("prov-unknown", "client-1", "haircut", MONDAY, "14:00")


def test_canceled_appointment_frees_the_slot(engine):
    appt = _reserve(engine)
    engine.transition(appt.id, AppointmentStatus.CANCELED, Actor.CLIENT)
    assert _reserve(engine, client="client-2").start_time == "14:00"


@pytest.mark.parametrize("workers", [8, 32])
def test_concurrent_reservations_have_single_winner(engine, workers):
    """100 racing clients on overlapping slots: exactly one wins."""
    starts = ["14:00", "14:30"] * 50

    def attempt(i):
        try:
            return _reserve(engine, start=starts[i], client=f"client-{i}")
        except SlotConflictError:
            return None

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(len(starts))))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert len(engine.bookings.list_for(PROVIDER, MONDAY)) == 1


def test_two_clients_racing_for_the_same_slot(engine):
    barrier = threading.Barrier(2)
    results = {}

    def attempt(client):
        barrier.wait()
        try:
            results[client] = _reserve(engine, client=client)
        except SlotConflictError as e:
            results[client] = e

    threads = [threading.Thread(target=attempt, args=(c,)) for c in ("alice", "bob")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    outcomes = sorted(type(r).__name__ for r in results.values())
    assert outcomes == ["Appointment", "SlotConflictError"]


def test_no_overlap_after_many_reservations(engine):
    for i, start in enumerate(["08:00", "08:30", "09:00", "10:00", "10:30", "13:00", "13:30", "17:00"]):
        try:
            _reserve(engine, start=start, client=f"client-{i}")
        except SlotConflictError:
            pass

    booked = sorted(
        (to_minutes(a.start_time), to_minutes(a.end_time) + a.buffer_minutes)
        for a in engine.bookings.list_for(PROVIDER, MONDAY)
    )
    for (_, first_end), (second_start, _) in zip(booked, booked[1:]):
        assert first_end <= second_start


def test_check_slot_does_not_reserve(engine):
    assert engine.check_slot(PROVIDER, "haircut", MONDAY, "14:00")
    assert engine.check_slot(PROVIDER, "haircut", MONDAY, "14:00")
    _reserve(engine)
    assert not engine.check_slot(PROVIDER, "haircut", MONDAY, "14:00")


def test_reservation_invalidates_cached_availability(engine):
    before = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    assert "14:00" in [s.start_time for s in before]
    assert len(engine.cache) == 1

    _reserve(engine)

    assert len(engine.cache) == 0
    after = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    assert "14:00" not in [s.start_time for s in after]


def test_reschedule_moves_the_appointment(engine, notifier):
    appt = _reserve(engine)
    moved = engine.reschedule(appt.id, NEXT_MONDAY, "16:00", Actor.CLIENT)

    assert moved.date == NEXT_MONDAY
    assert moved.start_time == "16:00"
    assert moved.end_time == "17:00"
    assert engine.bookings.list_for(PROVIDER, MONDAY) == []
    assert engine.check_slot(PROVIDER, "haircut", MONDAY, "14:00")
    assert notifier.notify.call_args.args[0] == "appointment.rescheduled"


def test_reschedule_may_overlap_its_own_old_slot(engine):
    appt = _reserve(engine)
    moved = engine.reschedule(appt.id, MONDAY, "14:30", Actor.PROVIDER)
    assert (moved.start_time, moved.end_time) == ("14:30", "15:30")


def test_reschedule_into_conflict_leaves_appointment_untouched(engine):
    appt = _reserve(engine, start="14:00")
    _reserve(engine, start="16:00", client="client-2")

    with pytest.raises(SlotConflictError):
        engine.reschedule(appt.id, MONDAY, "15:30", Actor.CLIENT)
    assert engine.get_appointment(appt.id).start_time == "14:00"


def test_reschedule_requires_open_appointment(engine):
    appt = _reserve(engine)
    engine.transition(appt.id, AppointmentStatus.EXECUTING, Actor.PROVIDER)
    with pytest.raises(IllegalTransitionError):
        engine.reschedule(appt.id, MONDAY, "16:00", Actor.PROVIDER)


def test_unknown_appointment(engine):
    with pytest.raises(AppointmentNotFoundError):
        engine.get_appointment("missing")
    with pytest.raises(AppointmentNotFoundError):
        engine.reschedule("missing", MONDAY, "16:00", Actor.CLIENT)


def test_client_cannot_reschedule_confirmed_appointment(engine):
    appt = _reserve(engine)
    engine.transition(appt.id, AppointmentStatus.CONFIRMED, Actor.PROVIDER)

    with pytest.raises(IllegalTransitionError):
        engine.reschedule(appt.id, MONDAY, "16:00", Actor.CLIENT)
    assert engine.get_appointment(appt.id).start_time == "14:00"

    moved = engine.reschedule(appt.id, MONDAY, "16:00", Actor.PROVIDER)
    assert moved.start_time == "16:00"
    assert moved.status == AppointmentStatus.CONFIRMED


def test_provider_terms_change_duration_buffer_and_price(engine):
    engine.set_provider_terms(
        PROVIDER, "haircut", ProviderServiceTerms(duration_minutes=30, buffer_time=30, price=70)
    )

    slots = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    assert (slots[-1].start_time, slots[-1].end_time) == ("17:00", "17:30")

    appt = _reserve(engine, start="09:00")
    assert appt.end_time == "09:30"
    assert appt.buffer_minutes == 30
    assert appt.original_price == 70
    # the buffer keeps 09:30 busy
    assert not engine.check_slot(PROVIDER, "haircut", MONDAY, "09:30")
    assert engine.check_slot(PROVIDER, "haircut", MONDAY, "10:00")



def test_provider_terms_invalidate_cached_availability(engine):
    before = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    assert before[-1].start_time == "17:00"

    engine.set_provider_terms(PROVIDER, "haircut", ProviderServiceTerms(duration_minutes=90))
    after = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    assert after[-1].start_time == "16:30"
    assert engine.resolve_duration(PROVIDER, "haircut") == (90, 0)
    assert engine.resolve_duration("prov-2", "haircut") == (60, 0)


def test_availability_entry_reshapes_bookable_slots(engine):
    entry = engine.set_availability(
        PROVIDER, AvailabilityEntry(date=MONDAY, start_time="10:00", end_time="12:00")
    )
    slots = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    assert [s.start_time for s in slots] == ["10:00", "10:30", "11:00"]
    assert {s.availability_id for s in slots} == {entry.id}

    with pytest.raises(SlotConflictError):
        _reserve(engine, start="14:00")
    assert _reserve(engine, start="10:00").start_time == "10:00"

    engine.delete_availability(entry.id)
    assert engine.availability(PROVIDER, MONDAY, service_id="haircut")[0].start_time == "08:00"


def test_unblocking_frees_the_slot(engine):
    blocked = engine.add_blocked_slot(
        PROVIDER, BlockedSlot(date=MONDAY, start_time="14:00", end_time="15:00", reason="Training")
    )
    assert "14:00" not in [s.start_time for s in engine.availability(PROVIDER, MONDAY, service_id="haircut")]
    with pytest.raises(SlotConflictError):
        _reserve(engine)

    engine.delete_blocked_slot(blocked.id)
    assert engine.list_blocked_slots(PROVIDER, MONDAY) == []
    assert "14:00" in [s.start_time for s in engine.availability(PROVIDER, MONDAY, service_id="haircut")]
    assert _reserve(engine).start_time == "14:00"


def test_lock_registry_is_empty_after_reservations(engine):
    for n, start in enumerate(("08:00", "09:00", "10:00", "11:00")):
        appt = _reserve(engine, start=start, client=f"client-{n}")
        engine.transition(appt.id, AppointmentStatus.CONFIRMED, Actor.PROVIDER)
    with pytest.raises(SlotConflictError):
        _reserve(engine, start="08:00", client="client-9")
    assert len(engine.locks) == 0
