"""Pytest configuration and fixtures."""

from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from booking_engine.collaborators import CollaboratorDispatcher
from booking_engine.config import Settings
from booking_engine.engine import BookingEngine
from booking_engine.schema import Break, ProviderSchedule, Service
from booking_engine.scorer import HeuristicScorer

TZ = ZoneInfo("America/Sao_Paulo")

# Sunday morning; the next day is a working Monday
NOW = datetime(2025, 2, 2, 10, 0, tzinfo=TZ)
SUNDAY = "2025-02-02"
MONDAY = "2025-02-03"
TUESDAY = "2025-02-04"
NEXT_MONDAY = "2025-02-10"

PROVIDER = "prov-1"


class InlineExecutor:
    """Runs submitted work immediately so collaborator calls can be asserted."""

    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def schedule() -> ProviderSchedule:
    """Monday to Saturday, 08:00-18:00, 30 minute grid."""
    return ProviderSchedule(
        working_days=[1, 2, 3, 4, 5, 6],
        start_time="08:00",
        end_time="18:00",
        slot_interval_minutes=30,
    )


@pytest.fixture
def service() -> Service:
    return Service(id="haircut", name="Haircut", duration_minutes=60, price=100.0)


@pytest.fixture
def lunch_break() -> Break:
    """Recurring Monday lunch, 12:00-13:00."""
    return Break(
        name="Lunch",
        start_time="12:00",
        end_time="13:00",
        is_recurring=True,
        day_of_week=1,
    )


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def payments() -> MagicMock:
    return MagicMock()


@pytest.fixture
def engine(schedule, service, notifier, payments) -> BookingEngine:
    """Engine with one configured provider and service, clock pinned to NOW."""
    eng = BookingEngine(
        Settings(),
        scorer=HeuristicScorer(),
        dispatcher=CollaboratorDispatcher(notifier, payments, InlineExecutor()),
        clock=lambda: NOW,
    )
    eng.set_schedule(PROVIDER, schedule)
    eng.add_service(service)
    return eng
