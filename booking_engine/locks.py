"""Named locks for serializing writes per (provider, date) and per appointment."""

import threading
from contextlib import ExitStack, contextmanager
from typing import Iterator

LockKey = tuple[str, ...]


def day_key(provider_id: str, date: str) -> LockKey:
    return ("day", provider_id, date)


def appointment_key(appointment_id: str) -> LockKey:
    return ("appointment", appointment_id)


class _NamedLock:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class LockRegistry:
    """
    Locks are created on first use and dropped when their last holder or
    waiter leaves, so the registry only holds keys that are in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[LockKey, _NamedLock] = {}

    def _checkout(self, key: LockKey) -> threading.Lock:
        with self._guard:
            named = self._locks.get(key)
            if named is None:
                named = self._locks[key] = _NamedLock()
            named.users += 1
            return named.lock

    def _checkin(self, key: LockKey) -> None:
        with self._guard:
            named = self._locks[key]
            named.users -= 1
            if named.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: LockKey) -> Iterator[None]:
        """Acquire every key's lock, in sorted order so two holders never deadlock."""
        ordered = sorted(set(keys))
        locks = [self._checkout(key) for key in ordered]
        try:
            with ExitStack() as stack:
                for lock in locks:
                    stack.enter_context(lock)
                yield
        finally:
            for key in ordered:
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
