"""Sources of "now" for the scheduler."""

import threading
from datetime import datetime, timedelta
from typing import Optional

from .models import to_utc, utc_now


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utc_now()


class ManualClock:
    """Clock that only moves when told to. Used to drive the scheduler in tests."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = to_utc(start) if start else utc_now()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)
            return self._now

    def set(self, when: datetime) -> None:
        with self._lock:
            self._now = to_utc(when)
