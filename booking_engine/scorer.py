"""Pluggable recommendation scorers for bookable slots.

Scores are advisory. A scorer only annotates score, reason and tags; it
never decides whether a slot can be booked.
"""

import json
import logging
from collections import Counter
from typing import Iterable, Optional, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from booking_engine.llm import LLMClient
from booking_engine.scheduler import TIME_OF_DAY, _parse_time
from booking_engine.schema import Appointment, AppointmentStatus, TimeSlot

logger = logging.getLogger(__name__)

RECOMMENDED_COUNT = 3


class ScoringContext(BaseModel):
    """Signals a scorer may use besides the slots themselves."""

    provider_id: str
    date: str
    duration_minutes: int
    hour_density: dict[int, int] = Field(
        default_factory=dict,
        description="Historical bookings per start hour",
    )
    time_of_day: Optional[str] = None


class SlotScorer(Protocol):
    def score(self, slots: list[TimeSlot], context: ScoringContext) -> list[TimeSlot]:
        ...


def booking_density(appointments: Iterable[Appointment]) -> dict[int, int]:
    """Count non-canceled appointments by start hour."""
    counts = Counter(
        _parse_time(a.start_time)[0]
        for a in appointments
        if a.status != AppointmentStatus.CANCELED
    )
    return dict(counts)


def period_of(start_time: str) -> str:
    hour = _parse_time(start_time)[0]
    for name, (first, last) in TIME_OF_DAY.items():
        if first <= hour < last:
            return name
    return "evening"


def _popular_hours(density: dict[int, int]) -> set[int]:
    if not density:
        return set()
    mean = sum(density.values()) / len(density)
    return {hour for hour, count in density.items() if count > mean}


def _mark_recommended(slots: list[TimeSlot]) -> None:
    ranked = sorted(
        (s for s in slots if s.score is not None),
        key=lambda s: (-s.score, s.start_time),
    )
    for slot in ranked[:RECOMMENDED_COUNT]:
        slot.tags.append("recommended")


class HeuristicScorer:
    """
    Time-of-day heuristic: on-the-hour starts score 85, half-hour starts 70,
    anything else 50. Popular hours and the client's preferred period add 10.
    """

    def score(self, slots: list[TimeSlot], context: ScoringContext) -> list[TimeSlot]:
        popular = _popular_hours(context.hour_density)
        scored = []
        for slot in slots:
            hour, minute = _parse_time(slot.start_time)
            if minute == 0:
                score, reason = 85.0, "On the hour, easy to remember"
            elif minute == 30:
                score, reason = 70.0, "Half past the hour, fairly convenient"
            else:
                score, reason = 50.0, "Available time"

            period = period_of(slot.start_time)
            tags = [period]
            if hour in popular:
                score += 10
                tags.append("popular")
                reason += "; a frequently booked hour"
            if context.time_of_day and context.time_of_day == period:
                score += 10
            scored.append(
                slot.model_copy(update={"score": min(score, 100.0), "reason": reason, "tags": tags})
            )
        _mark_recommended(scored)
        return scored


class LLMScorer:
    """Ranks slots with a chat model; falls back to the heuristic on any failure."""

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        fallback: Optional[SlotScorer] = None,
    ) -> None:
        self.client = client or LLMClient()
        self.fallback = fallback or HeuristicScorer()

    def score(self, slots: list[TimeSlot], context: ScoringContext) -> list[TimeSlot]:
        if not slots:
            return []
        try:
            rankings = self.client.rank_slots(slots, context.model_dump())
        except (httpx.HTTPError, ValidationError, json.JSONDecodeError, ValueError) as e:
            logger.error("LLM slot ranking failed, using heuristic scores: %s", e)
            return self.fallback.score(slots, context)

        scored = [
            slot.model_copy(
                update={
                    "score": ranking.score,
                    "reason": ranking.reason,
                    "tags": [period_of(slot.start_time)],
                }
            )
            for slot, ranking in zip(slots, rankings)
        ]
        _mark_recommended(scored)
        return scored


def _unscored(slots: list[TimeSlot]) -> list[TimeSlot]:
    return [s.model_copy(update={"score": None, "tags": []}) for s in slots]


def apply_scorer(
    scorer: Optional[SlotScorer],
    slots: list[TimeSlot],
    context: ScoringContext,
) -> list[TimeSlot]:
    """
    Run a scorer and keep it honest.
    Output that adds, drops, reorders or alters a slot's times or availability
    is discarded and the slots come back unscored.
    """
    if scorer is None or not slots:
        return _unscored(slots)

    try:
        scored = scorer.score([s.model_copy(deep=True) for s in slots], context)
    except Exception:
        logger.exception("Scorer %s raised, returning unscored slots", type(scorer).__name__)
        return _unscored(slots)

    if len(scored) != len(slots) or any(
        (a.start_time, a.end_time, a.is_available) != (b.start_time, b.end_time, b.is_available)
        for a, b in zip(slots, scored)
    ):
        logger.error("Scorer %s altered slot legality fields, discarding scores", type(scorer).__name__)
        return _unscored(slots)

    for slot in scored:
        if slot.score is not None:
            slot.score = max(0.0, min(100.0, float(slot.score)))
    return scored
