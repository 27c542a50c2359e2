"""
Purpose: Notification / audit sink interface.
What it does:
- Defines AuditEvent, the structured record emitted on every Order state
  transition and every Bid status change.
- AuditPublisher delivers events to sinks fire-and-forget: publish() only
  enqueues, a background worker does the delivery. Sinks therefore never run
  inside the engine's locked sections, and a failing sink is logged and skipped.

Rule: No business logic here. Publishing must never raise into the caller.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)

ORDER_ENTITY = "order"
BID_ENTITY = "bid"


@dataclass(frozen=True)
class AuditEvent:
    """
    One state change on an Order or a Bid.
    """
    entity: str            # "order" | "bid"
    entity_id: str
    order_id: str
    from_state: Optional[str]
    to_state: str
    note: Optional[str] = None
    actor: str = "system"
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def publish(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Writes every event to the audit logger."""

    def __init__(self, logger_name: str = "marketplace.audit"):
        self._logger = logging.getLogger(logger_name)

    def publish(self, event: AuditEvent) -> None:
        self._logger.info(
            "%s %s (order %s): %s -> %s by %s%s",
            event.entity,
            event.entity_id,
            event.order_id,
            event.from_state,
            event.to_state,
            event.actor,
            f" [{event.note}]" if event.note else "",
        )


class InMemoryAuditSink:
    """Keeps events in memory. Handy for hosts that poll, and for tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[AuditEvent] = []

    def publish(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def for_order(self, order_id: str) -> List[AuditEvent]:
        return [event for event in self.events if event.order_id == order_id]


class AuditPublisher:
    """
    Fan-out to one or more sinks.

    background=True  -> events are queued and delivered by a daemon thread.
    background=False -> events are delivered synchronously (callers still only
                        publish after releasing their locks).
    """

    _STOP = object()

    def __init__(self, sinks: Iterable[AuditSink] = (), *, background: bool = True):
        self.sinks: List[AuditSink] = list(sinks)
        self.background = background
        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()

    def add_sink(self, sink: AuditSink) -> None:
        self.sinks.append(sink)

    def publish(self, event: AuditEvent) -> None:
        if not self.background:
            self._deliver(event)
            return
        self._ensure_worker()
        self._queue.put(event)

    def publish_all(self, events: Iterable[AuditEvent]) -> None:
        for event in events:
            self.publish(event)

    def flush(self) -> None:
        """Block until every queued event has been delivered."""
        if self.background and self._worker is not None:
            self._queue.join()

    def close(self) -> None:
        with self._worker_lock:
            if self._worker is None:
                return
            self._queue.put(self._STOP)
            self._worker.join()
            self._worker = None

    # --- internals ---

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="audit-publisher", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            try:
                sink.publish(event)
            except Exception:
                logger.exception("Audit sink %r failed for %s %s", sink, event.entity, event.entity_id)
