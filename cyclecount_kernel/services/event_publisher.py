"""
cyclecount_kernel.services.event_publisher -- Domain event outbox and bus.

Responsibility:
    ``EventPublisher`` writes each CountEvent to the append-only
    ``count_events`` table inside the caller's transaction and queues it on
    the session.  Queued events are handed to the ``EventBus`` only after
    that transaction commits; a rollback discards them.

    ``EventBus`` is the in-process subscription point for the notification
    and UI layers.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - No subscriber ever sees an event for a transition that was rolled
      back.
    - Subscriber exceptions are logged and swallowed at the bus boundary;
      they never affect engine state or other subscribers.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.events import CountEvent, EventType
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.event import CountEventModel
from cyclecount_kernel.services.base import BaseService
from cyclecount_kernel.utils.hashing import to_json_safe

logger = get_logger("services.events")

EventHandler = Callable[[CountEvent], None]

WILDCARD = "*"
_PENDING_KEY = "cyclecount_pending_events"
_HOOKED_KEY = "cyclecount_event_hooks"


class EventBus:
    """
    In-process publish/subscribe for committed CountEvents.

    Guarantees:
        - Handlers for a specific type run before wildcard handlers, each
          group in subscription order.
        - subscribe/unsubscribe are safe to call from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_type: EventType | str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unsubscribes it."""
        key = event_type.value if isinstance(event_type, EventType) else str(event_type)
        if key != WILDCARD:
            EventType(key)
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(key, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: CountEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.event_type.value, ()))
            handlers += list(self._handlers.get(WILDCARD, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event.event_type.value,
                        "event_id": str(event.event_id),
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )


class EventPublisher(BaseService):
    """Writes events to the outbox and delivers them after commit."""

    def __init__(self, session: Session, clock: Clock, bus: EventBus | None = None):
        super().__init__(session, clock)
        self._bus = bus
        if bus is not None:
            self._install_hooks(session, bus)

    @staticmethod
    def _install_hooks(session: Session, bus: EventBus) -> None:
        if session.info.get(_HOOKED_KEY):
            return
        session.info[_HOOKED_KEY] = True
        session.info.setdefault(_PENDING_KEY, [])

        def _after_commit(sess: Session) -> None:
            pending = sess.info.get(_PENDING_KEY, [])
            sess.info[_PENDING_KEY] = []
            for evt in pending:
                bus.publish(evt)

        def _after_rollback(sess: Session) -> None:
            dropped = len(sess.info.get(_PENDING_KEY, []))
            sess.info[_PENDING_KEY] = []
            if dropped:
                logger.debug("pending_events_discarded", extra={"count": dropped})

        sa_event.listen(session, "after_commit", _after_commit)
        sa_event.listen(session, "after_rollback", _after_rollback)

    def emit(
        self,
        event_type: EventType,
        *,
        actor_id: str | None = None,
        journal_id: UUID | None = None,
        plan_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> CountEvent:
        safe_payload = to_json_safe(payload or {})
        evt = CountEvent(
            event_id=uuid4(),
            event_type=event_type,
            occurred_at=self._clock.now(),
            actor_id=actor_id,
            journal_id=journal_id,
            plan_id=plan_id,
            payload=safe_payload,
        )
        self.session.add(
            CountEventModel(
                id=evt.event_id,
                event_type=event_type.value,
                actor_id=actor_id,
                journal_id=journal_id,
                plan_id=plan_id,
                payload=safe_payload,
                occurred_at=evt.occurred_at,
            )
        )
        if self._bus is not None:
            self.session.info.setdefault(_PENDING_KEY, []).append(evt)
        logger.debug(
            "event_recorded",
            extra={"event_type": event_type.value, "event_id": str(evt.event_id)},
        )
        return evt
