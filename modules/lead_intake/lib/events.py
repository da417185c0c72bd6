from __future__ import annotations

import logging
import queue
import threading
from typing import Protocol

from .logging_bridge import activity
from .models import NewJobEvent

LOG = logging.getLogger(__name__)


class Notifier(Protocol):
    def publish(self, event: NewJobEvent) -> None: ...


class NullNotifier:
    """Notifier for runs nobody is listening to (CLI one-shots, tests)."""

    def publish(self, event: NewJobEvent) -> None:
        return None


class EventBus:
    """
    Fan-out of NewJobEvents to subscribers, each with its own bounded queue.
    publish() never blocks: a full subscriber queue drops the event for that subscriber.
    """

    def __init__(self, queue_size: int = 10) -> None:
        self.queue_size = int(queue_size)
        self._subs: list[queue.Queue[NewJobEvent]] = []
        self._lock = threading.Lock()
        self.dropped = 0

    def subscribe(self) -> queue.Queue[NewJobEvent]:
        q: queue.Queue[NewJobEvent] = queue.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subs.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[NewJobEvent]) -> None:
        with self._lock:
            if q in self._subs:
                self._subs.remove(q)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, event: NewJobEvent) -> None:
        with self._lock:
            subs = list(self._subs)
        for q in subs:
            try:
                q.put_nowait(event)
            except queue.Full:
                with self._lock:
                    self.dropped += 1
                LOG.debug("event bus: slow subscriber, dropped %s", event.type)


class LogNotifier:
    """Writes one activity record per new job. Default listener for `serve`."""

    def publish(self, event: NewJobEvent) -> None:
        activity({
            "component": "lead_intake.events",
            "op": event.type,
            "source_id": event.source_id,
            "company": event.company,
            "title": event.title,
            "url": event.url,
            "score": event.score,
        })
