"""
Time provider abstraction for deterministic testing

Ballot expiry and poll deadlines are data-level timeouts, so every decision
that depends on "now" reads it from an injectable provider.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for time providers - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class RealTimeProvider:
    """Production time provider using system clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TestTimeProvider:
    """
    Controllable time provider for deterministic tests

    Lets tests freeze time and jump forward past TTLs without sleeping.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, initial_time: datetime | None = None) -> None:
        """
        Initialize with optional fixed time

        Args:
            initial_time: Starting time (defaults to Unix epoch)
        """
        self._current_time = initial_time or datetime(1970, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        self._current_time = dt

    def advance_seconds(self, seconds: int) -> None:
        self._current_time += timedelta(seconds=seconds)

    def advance_minutes(self, minutes: int) -> None:
        self._current_time += timedelta(minutes=minutes)

    def advance_hours(self, hours: int) -> None:
        self._current_time += timedelta(hours=hours)

    def advance_days(self, days: int) -> None:
        self._current_time += timedelta(days=days)
