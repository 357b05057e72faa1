"""TTL cache of computed availability, invalidated per (provider, date).

Each (provider, date) carries a generation counter. Readers take a token
before computing and hand it back on ``set``; if an invalidation happened
in between, the stale result is dropped instead of cached.
"""

import logging
import threading
import time
from typing import Callable, Optional

from booking_engine.schema import TimeSlot

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, int, int]


class AvailabilityCache:
    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, tuple[float, list[TimeSlot]]] = {}
        self._provider_generation: dict[str, int] = {}
        self._day_generation: dict[tuple[str, str], int] = {}
        # dates before this one are never cached and keep no generation
        self._horizon: Optional[str] = None

    @staticmethod
    def make_key(provider_id: str, date: str, duration: int, buffer: int) -> CacheKey:
        return (provider_id, date, duration, buffer)

    def _generation(self, provider_id: str, date: str) -> tuple[int, int]:
        return (
            self._provider_generation.get(provider_id, 0),
            self._day_generation.get((provider_id, date), 0),
        )

    def _is_past(self, date: str) -> bool:
        return self._horizon is not None and date < self._horizon

    def token(self, provider_id: str, date: str) -> tuple[int, int]:
        with self._lock:
            return self._generation(provider_id, date)

    def get(self, key: CacheKey) -> Optional[list[TimeSlot]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, slots = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return [s.model_copy(deep=True) for s in slots]

    def set(self, key: CacheKey, slots: list[TimeSlot], token: Optional[tuple[int, int]] = None) -> bool:
        """Store slots unless the key was invalidated since ``token`` was taken."""
        if self.ttl_seconds <= 0:
            return False
        provider_id, date = key[0], key[1]
        with self._lock:
            if self._is_past(date):
                return False
            if token is not None and token != self._generation(provider_id, date):
                return False
            now = self._clock()
            expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (now + self.ttl_seconds, [s.model_copy(deep=True) for s in slots])
        return True

    def invalidate(self, provider_id: str, date: Optional[str] = None) -> int:
        """Drop the provider's entries for one date, or for every date when date is None."""
        with self._lock:
            if date is None:
                self._provider_generation[provider_id] = self._provider_generation.get(provider_id, 0) + 1
            elif not self._is_past(date):
                day = (provider_id, date)
                self._day_generation[day] = self._day_generation.get(day, 0) + 1
            stale = [
                k for k in self._entries
                if k[0] == provider_id and (date is None or k[1] == date)
            ]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Invalidated %d availability entries for %s %s", len(stale), provider_id, date or "*")
        return len(stale)

    def prune(self, today: str) -> int:
        """Forget entries and generations of dates before today. Returns the number of generations dropped."""
        with self._lock:
            if self._horizon is not None and today <= self._horizon:
                return 0
            self._horizon = today
            old_days = [day for day in self._day_generation if day[1] < today]
            for day in old_days:
                del self._day_generation[day]
            for k in [k for k in self._entries if k[1] < today]:
                del self._entries[k]
        if old_days:
            logger.debug("Pruned %d day generations before %s", len(old_days), today)
        return len(old_days)

    def generations(self) -> int:
        """Number of (provider, date) generation counters currently kept."""
        with self._lock:
            return len(self._day_generation)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
