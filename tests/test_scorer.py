"""Tests for slot scorers and the scoring guard."""

from unittest.mock import MagicMock

import httpx
import pytest

from booking_engine.llm import SlotRanking
from booking_engine.scorer import (
    HeuristicScorer,
    LLMScorer,
    ScoringContext,
    apply_scorer,
    booking_density,
)
from booking_engine.schema import Actor, AppointmentStatus, TimeSlot
from conftest import MONDAY, PROVIDER


@pytest.fixture
def slots():
    return [
        TimeSlot(start_time="08:00", end_time="09:00"),
        TimeSlot(start_time="08:30", end_time="09:30"),
        TimeSlot(start_time="13:00", end_time="14:00"),
        TimeSlot(start_time="13:15", end_time="14:15"),
        TimeSlot(start_time="18:00", end_time="19:00"),
    ]


@pytest.fixture
def context():
    return ScoringContext(provider_id=PROVIDER, date=MONDAY, duration_minutes=60)


def test_heuristic_scores_by_minute(slots, context):
    scored = HeuristicScorer().score(slots, context)
    assert [s.score for s in scored] == [85, 70, 85, 50, 85]
    assert scored[0].reason == "On the hour, easy to remember"
    assert scored[1].reason == "Half past the hour, fairly convenient"
    assert scored[3].reason == "Available time"
    assert [s.tags[0] for s in scored] == ["morning", "morning", "afternoon", "afternoon", "evening"]


def test_heuristic_marks_top_three(slots, context):
    scored = HeuristicScorer().score(slots, context)
    recommended = [s.start_time for s in scored if "recommended" in s.tags]
    assert recommended == ["08:00", "13:00", "18:00"]


def test_heuristic_boosts_popular_hours_and_preferred_period(slots):
    context = ScoringContext(
        provider_id=PROVIDER,
        date=MONDAY,
        duration_minutes=60,
        hour_density={8: 6, 13: 1, 18: 2},
        time_of_day="afternoon",
    )
    scored = {s.start_time: s for s in HeuristicScorer().score(slots, context)}
    assert scored["08:00"].score == 95
    assert "popular" in scored["08:00"].tags
    assert scored["08:00"].reason.endswith("a frequently booked hour")
    assert scored["13:00"].score == 95
    assert scored["13:15"].score == 60
    assert scored["18:00"].score == 85


def test_booking_density_skips_canceled(engine):
    a = engine.reserve(PROVIDER, "client-1", "haircut", MONDAY, "09:00")
    engine.reserve(PROVIDER, "client-2", "haircut", MONDAY, "14:00")
    engine.transition(a.id, AppointmentStatus.CANCELED, Actor.CLIENT)
    assert booking_density(engine.bookings.list_for_provider(PROVIDER)) == {14: 1}


def test_apply_scorer_without_scorer(slots, context):
    result = apply_scorer(None, slots, context)
    assert [s.start_time for s in result] == [s.start_time for s in slots]
    assert all(s.score is None for s in result)


def test_apply_scorer_discards_altered_times(slots, context):
    cheater = MagicMock()
    cheater.score.side_effect = lambda ss, ctx: [
        s.model_copy(update={"start_time": "07:00", "score": 99}) for s in ss
    ]
    result = apply_scorer(cheater, slots, context)
    assert [s.start_time for s in result] == [s.start_time for s in slots]
    assert all(s.score is None for s in result)


def test_apply_scorer_discards_dropped_slots(slots, context):
    dropper = MagicMock()
    dropper.score.side_effect = lambda ss, ctx: ss[:2]
    result = apply_scorer(dropper, slots, context)
    assert len(result) == len(slots)
    assert all(s.score is None for s in result)


def test_apply_scorer_discards_availability_flip(slots, context):
    flipper = MagicMock()
    flipper.score.side_effect = lambda ss, ctx: [
        s.model_copy(update={"is_available": False, "score": 10}) for s in ss
    ]
    result = apply_scorer(flipper, slots, context)
    assert all(s.is_available for s in result)
    assert all(s.score is None for s in result)


def test_apply_scorer_survives_scorer_error(slots, context):
    broken = MagicMock()
    broken.score.side_effect = RuntimeError("boom")
    result = apply_scorer(broken, slots, context)
    assert len(result) == len(slots)
    assert all(s.score is None for s in result)


def test_apply_scorer_does_not_mutate_input(slots, context):
    apply_scorer(HeuristicScorer(), slots, context)
    assert all(s.score is None and s.tags == [] for s in slots)


def test_llm_scorer_uses_model_rankings(slots, context):
    client = MagicMock()
    client.rank_slots.return_value = [
        SlotRanking(score=90 - i * 10, reason=f"Reason {i}") for i in range(len(slots))
    ]
    scored = LLMScorer(client=client).score(slots, context)

    assert [s.score for s in scored] == [90, 80, 70, 60, 50]
    assert scored[2].reason == "Reason 2"
    assert "recommended" in scored[0].tags
    client.rank_slots.assert_called_once()
    assert client.rank_slots.call_args.args[1]["date"] == MONDAY


@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError("unreachable"), ValueError("expected 5 rankings, got 4")],
)
def test_llm_scorer_falls_back_to_heuristic(slots, context, error):
    client = MagicMock()
    client.rank_slots.side_effect = error
    scored = LLMScorer(client=client).score(slots, context)
    assert [s.score for s in scored] == [85, 70, 85, 50, 85]


def test_smart_availability_is_scored(engine):
    simple = engine.availability(PROVIDER, MONDAY, service_id="haircut")
    smart = engine.availability(PROVIDER, MONDAY, service_id="haircut", mode="smart")

    assert all(s.score is None for s in simple)
    assert [s.start_time for s in smart] == [s.start_time for s in simple]
    assert all(s.score is not None for s in smart)


def test_smart_availability_respects_time_of_day(engine):
    smart = engine.availability(
        PROVIDER, MONDAY, service_id="haircut", mode="smart", time_of_day="morning"
    )
    assert smart
    assert all(s.start_time < "12:00" for s in smart)


def test_unknown_mode_is_rejected(engine):
    with pytest.raises(ValueError):
        engine.availability(PROVIDER, MONDAY, mode="clever")
