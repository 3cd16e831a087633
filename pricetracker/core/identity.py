"""
Identity and clock sources injected into services.

Services take an ``id_factory`` and a ``clock`` so tests can supply
deterministic values.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator
from uuid import UUID, uuid4

IdFactory = Callable[[], UUID]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def random_ids() -> UUID:
    """Default identity strategy: random version-4 UUIDs."""
    return uuid4()


class SequentialIds:
    """Deterministic UUIDs 00000000-0000-0000-0000-000000000001, ...002, ..."""

    def __init__(self, start: int = 1):
        self._counter: Iterator[int] = itertools.count(start)

    def __call__(self) -> UUID:
        return UUID(int=next(self._counter))


class SteppingClock:
    """Clock that advances by a fixed step on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self._current = start
        self._step = step

    def __call__(self) -> datetime:
        value = self._current
        self._current = self._current + self._step
        return value


__all__ = ["IdFactory", "Clock", "utcnow", "random_ids", "SequentialIds", "SteppingClock"]
