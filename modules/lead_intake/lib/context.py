"""
Deadline + cancellation shared between the orchestrator and connector threads.

A FetchContext is cheap to create. Children inherit the parent's deadline
(bounded by their own) and are cancelled when the parent is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

LOG = logging.getLogger(__name__)


class DeadlineExceeded(Exception):
    """Raised by blocking calls when the context expired or was cancelled."""


class FetchContext:
    def __init__(self, deadline: float | None = None, parent: FetchContext | None = None) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline  # time.monotonic() based
        self._cancel_evt = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._children: list[FetchContext] = []
        self._watcher: threading.Thread | None = None
        if parent is not None:
            parent._adopt(self)

    # ---- constructors ----
    @classmethod
    def background(cls) -> FetchContext:
        return cls(None)

    @classmethod
    def with_timeout(cls, seconds: float) -> FetchContext:
        return cls(time.monotonic() + float(seconds))

    def child(self, seconds: float | None = None) -> FetchContext:
        deadline = time.monotonic() + float(seconds) if seconds else None
        return FetchContext(deadline, parent=self)

    # ---- state ----
    @property
    def cancelled(self) -> bool:
        return self._cancel_evt.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline (None = no deadline)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        if self._cancel_evt.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        if self._cancel_evt.is_set():
            raise DeadlineExceeded("context cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceeded("deadline exceeded")

    def timeout_for(self, default: float) -> float:
        """Per-request timeout capped at what is left of the deadline."""
        rem = self.remaining()
        if rem is None:
            return float(default)
        return max(0.05, min(float(default), rem))

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on cancel or deadline.
        Returns True if the full sleep elapsed.
        """
        rem = self.remaining()
        if rem is not None and rem < seconds:
            self._cancel_evt.wait(rem)
            return False
        return not self._cancel_evt.wait(seconds)

    # ---- cancellation ----
    def cancel(self) -> None:
        with self._lock:
            if self._cancel_evt.is_set():
                return
            self._cancel_evt.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
            children = list(self._children)
        for cb in callbacks:
            try:
                cb()
            except Exception:
                LOG.debug("cancel callback failed", exc_info=True)
        for c in children:
            c.cancel()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run `callback` once when this context is cancelled or its deadline passes.
        A watcher thread turns deadline expiry into cancel(). Returns an unregister function.
        """
        with self._lock:
            if self._cancel_evt.is_set():
                run_now = True
            else:
                run_now = False
                self._callbacks.append(callback)
                if self._watcher is None and self.deadline is not None:
                    self._watcher = threading.Thread(target=self._watch, name="fetch-ctx-watch", daemon=True)
                    self._watcher.start()
        if run_now:
            callback()

        def _unregister() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return _unregister

    def _watch(self) -> None:
        rem = self.remaining()
        if not self._cancel_evt.wait(rem):
            self.cancel()

    def _adopt(self, child: FetchContext) -> None:
        with self._lock:
            cancelled = self._cancel_evt.is_set()
            if not cancelled:
                self._children.append(child)
        if cancelled:
            child.cancel()
