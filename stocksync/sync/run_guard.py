# stocksync/sync/run_guard.py
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunGuard:
    """
    Single-flight latch for reconciliation passes, plus the trigger timestamps.

    Local to this process: two service instances each have their own latch and
    can run passes at the same time. A multi-instance deployment needs an
    external lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False
        self.last_trigger_at: Optional[datetime] = None
        self.next_trigger_at: Optional[datetime] = None
        self.interval_seconds: Optional[float] = None
        self.last_outcome: Optional[Dict[str, Any]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def try_acquire(self) -> bool:
        """False means a pass is already running; that is an expected outcome, not an error."""
        with self._lock:
            if self._running:
                return False
            self._running = True
            self.last_trigger_at = _utcnow()
            return True

    def release(self) -> None:
        with self._lock:
            self._running = False
            if self.interval_seconds:
                self.next_trigger_at = _utcnow() + timedelta(seconds=self.interval_seconds)

    def schedule_next(self, interval_seconds: Optional[float]) -> None:
        with self._lock:
            self.interval_seconds = interval_seconds
            self.next_trigger_at = (
                _utcnow() + timedelta(seconds=interval_seconds) if interval_seconds else None
            )

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self._running,
                "interval_seconds": self.interval_seconds,
                "last_trigger_at": self.last_trigger_at.isoformat() if self.last_trigger_at else None,
                "next_trigger_at": self.next_trigger_at.isoformat() if self.next_trigger_at else None,
                "last_outcome": self.last_outcome,
            }
