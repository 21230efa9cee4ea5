"""Repeat-alert suppression per service."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class ThrottleEntry:
    last_alert_time: float
    last_status: str


class AlertThrottle:
    """In-memory map of the last alert per service, safe to share across tasks and threads.

    Process-lifetime only: open incidents in the store are the durable record of
    what was already notified.
    """

    def __init__(self, window_minutes: float = 15, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = float(window_minutes) * 60.0
        self._clock = clock
        self._entries: dict[str, ThrottleEntry] = {}
        self._lock = threading.Lock()

    def should_throttle(self, service_id: str, status: str, status_changed: bool) -> bool:
        if status_changed:
            return False
        with self._lock:
            entry = self._entries.get(service_id)
        if entry is None:
            return False
        elapsed = self._clock() - entry.last_alert_time
        return entry.last_status == status and elapsed < self.window_seconds

    def record(self, service_id: str, status: str) -> None:
        with self._lock:
            self._entries[service_id] = ThrottleEntry(last_alert_time=self._clock(), last_status=status)

    def get(self, service_id: str) -> Optional[ThrottleEntry]:
        with self._lock:
            return self._entries.get(service_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
