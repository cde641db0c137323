# deskledger/utils/clock.py
"""Injectable time source and document-number generation."""

import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta

import pytz


class SystemClock:
    """Wall clock. Timestamps are naive UTC; business dates follow the desk's timezone."""

    def __init__(self, business_timezone: str = "Asia/Dubai"):
        self.tz = pytz.timezone(business_timezone)

    def now(self) -> datetime:
        return datetime.now(pytz.UTC).replace(tzinfo=None)

    def today(self) -> date:
        return datetime.now(pytz.UTC).astimezone(self.tz).date()


class ManualClock:
    """
    Deterministic clock for tests and replays.

    Every call to now() advances by `step`, so rows stamped in sequence keep a
    strict created_at order.
    """

    def __init__(self, start: datetime = datetime(2025, 1, 1, 9, 0, 0), step: timedelta = timedelta(seconds=1)):
        self._current = start
        self._step = step

    def now(self) -> datetime:
        value = self._current
        self._current = self._current + self._step
        return value

    def today(self) -> date:
        return self._current.date()

    def advance(self, delta: timedelta) -> None:
        self._current = self._current + delta


class UuidIdGenerator:
    """PREFIX-YYYYMMDD-xxxxxxxx numbers (8 hex chars of a uuid4)."""

    def next(self, prefix: str, on: date) -> str:
        return f"{prefix}-{on:%Y%m%d}-{uuid.uuid4().hex[:8]}"


class SequentialIdGenerator:
    """PREFIX-YYYYMMDD-000001 numbers, counting per prefix. In-memory only."""

    def __init__(self):
        self._counters = defaultdict(int)

    def next(self, prefix: str, on: date) -> str:
        self._counters[prefix] += 1
        return f"{prefix}-{on:%Y%m%d}-{self._counters[prefix]:06d}"
