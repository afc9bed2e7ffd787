"""Injectable clock so domain and service code never read wall time directly"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from trustlend.utils.date_utils import ensure_utc


class Clock(ABC):
    """Source of the current time; always returns an aware UTC datetime"""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Test clock that only moves when told to"""

    def __init__(self, fixed_time: datetime | None = None):
        self._current = ensure_utc(fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._current

    def set_time(self, value: datetime) -> None:
        self._current = ensure_utc(value)

    def advance(self, seconds: float = 1) -> datetime:
        self._current = self._current + timedelta(seconds=seconds)
        return self._current
