from __future__ import annotations

import dataclasses
import threading
from datetime import datetime
from typing import Any

from .models import ScrapeStatus
from .utils import now_utc


class StatusRegister:
    """
    Single-slot, swap-on-write holder for the current ScrapeStatus.
    Owned by the scheduler; readers (CLI status, tests) only call get()/snapshot().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = ScrapeStatus()

    def get(self) -> ScrapeStatus:
        with self._lock:
            return self._status

    def snapshot(self) -> dict[str, Any]:
        return self.get().to_dict()

    def try_begin(self, now: datetime | None = None) -> bool:
        """Mark a cycle as running. False if one already is (caller should skip)."""
        with self._lock:
            if self._status.running:
                return False
            self._status = dataclasses.replace(self._status, running=True, last_run_at=now or now_utc())
            return True

    def finish(self, added: int, error: str = "", now: datetime | None = None) -> ScrapeStatus:
        with self._lock:
            prev = self._status
            self._status = ScrapeStatus(
                running=False,
                last_run_at=prev.last_run_at,
                last_ok_at=prev.last_ok_at if error else (now or now_utc()),
                last_error=error,
                last_added=int(added),
            )
            return self._status
