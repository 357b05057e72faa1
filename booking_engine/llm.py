"""LLM client used by the smart scorer to rank bookable slots."""

import json
import logging
import os
import re
from typing import Any

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from booking_engine.schema import TimeSlot

logger = logging.getLogger(__name__)


class SlotRanking(BaseModel):
    """Model verdict for one slot."""

    score: float = Field(..., ge=0, le=100)
    reason: str = Field(..., min_length=1)


_rankings = TypeAdapter(list[SlotRanking])


class LLMClient:
    """OpenAI-compatible chat completion client."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.base_url = base_url or os.environ.get(
            "OPENAI_BASE_URL", "https://api.openai.com/v1"
        ).rstrip("/")
        self.model = model or os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
        self.timeout = timeout

    def _chat(self, messages: list[dict[str, str]]) -> str:
        """Call chat completion and return content."""
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY is required")
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": 0.1,
                },
            )
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]["content"]

    @staticmethod
    def _extract_json(text: str) -> str:
        """Extract JSON from model output (handles markdown code blocks)."""
        text = text.strip()
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
        if match:
            return match.group(1).strip()
        # Raw [...] wins over {...}: rankings are arrays of objects
        match = re.search(r"\[[\s\S]*\]", text)
        if match:
            return match.group(0)
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            return match.group(0)
        return text

    def _parse_rankings(self, raw: str, expected: int) -> list[SlotRanking]:
        rankings = _rankings.validate_python(json.loads(self._extract_json(raw)))
        if len(rankings) != expected:
            raise ValueError(f"expected {expected} rankings, got {len(rankings)}")
        return rankings

    def rank_slots(
        self,
        slots: list[TimeSlot],
        context: dict[str, Any],
    ) -> list[SlotRanking]:
        """
        Ask the model for a 0-100 score and a one-sentence reason per slot.
        Retries once with a repair prompt when the first answer does not validate.
        """
        if not slots:
            return []

        slots_desc = "\n".join(f"- {s.start_time}-{s.end_time}" for s in slots)
        prompt = f"""A client is booking a service with a provider.
Context:
- Provider: {context.get("provider_id")}
- Date: {context.get("date")}
- Service duration (minutes): {context.get("duration_minutes")}
- Bookings per start hour in the provider's history: {context.get("hour_density", {})}
- Preferred time of day: {context.get("time_of_day") or "none"}

These {len(slots)} slots are all bookable:
{slots_desc}

For each slot, in the same order, return an object {{"score": 0-100, "reason": "one short sentence"}}.
Higher scores are more convenient for the client. Return ONLY a JSON array with exactly {len(slots)} objects."""

        messages = [{"role": "user", "content": prompt}]
        raw = self._chat(messages)

        try:
            return self._parse_rankings(raw, len(slots))
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            logger.warning("Slot ranking did not validate, retrying: %s", e)
            repair_prompt = f"""The previous answer was invalid. Error: {e}
Return ONLY a JSON array of exactly {len(slots)} objects, each {{"score": number 0-100, "reason": string}}."""
            messages.append({"role": "assistant", "content": raw})
            messages.append({"role": "user", "content": repair_prompt})
            raw2 = self._chat(messages)
            return self._parse_rankings(raw2, len(slots))
