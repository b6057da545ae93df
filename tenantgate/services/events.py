from __future__ import annotations

import logging
import threading
from typing import Callable

from tenantgate.domain.entitlements import EntitlementEvent


logger = logging.getLogger(__name__)

EventHandler = Callable[[EntitlementEvent], None]


class EventBus:
    # Passed explicitly to whoever publishes; there is no process-wide instance.
    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: EntitlementEvent) -> int:
        # Deliver to every handler; a failing handler never aborts the mutation.
        with self._lock:
            handlers = list(self._handlers)
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as exc:  # noqa: BLE001 - subscriber failures are non-fatal
                logger.warning(
                    "event_handler_failed event_type=%s tenant_id=%s error=%s",
                    event.event_type,
                    event.tenant_id,
                    type(exc).__name__,
                )
        return delivered


def log_event(event: EntitlementEvent) -> None:
    logger.info(
        "entitlement_event event_type=%s tenant_id=%s actor_id=%s subject_id=%s metadata=%s",
        event.event_type,
        event.tenant_id,
        event.actor_id,
        event.subject_id,
        event.metadata,
    )


class RecordingSubscriber:
    # Keeps published events in memory; used by tests and the admin event feed.
    def __init__(self, limit: int = 500) -> None:
        self._limit = limit
        self._events: list[EntitlementEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: EntitlementEvent) -> None:
        with self._lock:
            self._events.append(event)
            if len(self._events) > self._limit:
                del self._events[: len(self._events) - self._limit]

    def events(self, tenant_id: str | None = None) -> list[EntitlementEvent]:
        with self._lock:
            events = list(self._events)
        if tenant_id is None:
            return events
        return [event for event in events if event.tenant_id == tenant_id]
