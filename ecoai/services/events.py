"""Tenant-scoped notification events.

Producers (the orchestrator, the booking and order managers) only know the
``EventPublisher`` interface: ``publish(tenant_id, event_name, payload)``.
``EventBus`` is the in-process implementation: subscribers register a
callback per tenant (or ``"*"`` for every tenant) and receive
``(tenant_id, event_name, payload)``.  A failing subscriber is logged and
never breaks the conversation that produced the event.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# ── Event names ──────────────────────────────────────────────────────
NEW_MESSAGE = "NEW_MESSAGE"
NEW_NOTIFICATION = "NEW_NOTIFICATION"
NEW_ORDER = "NEW_ORDER"
ORDER_CANCELLED = "ORDER_CANCELLED"
PAYMENT_PROOF_RECEIVED = "PAYMENT_PROOF_RECEIVED"

ALL_TENANTS = "*"

Subscriber = Callable[[str, str, dict[str, Any]], None]


class EventPublisher(Protocol):
    def publish(self, tenant_id: str, event_name: str, payload: dict[str, Any]) -> None: ...


class EventBus:
    """Fan-out of events to subscribers registered per tenant."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, tenant_id: str, handler: Subscriber) -> None:
        with self._lock:
            self._subscribers.setdefault(tenant_id, []).append(handler)
        logger.debug("Subscribed %s to events of tenant %s", getattr(handler, "__name__", handler), tenant_id)

    def unsubscribe(self, tenant_id: str, handler: Subscriber) -> None:
        with self._lock:
            handlers = self._subscribers.get(tenant_id, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, tenant_id: str, event_name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            handlers = [
                *self._subscribers.get(tenant_id, []),
                *self._subscribers.get(ALL_TENANTS, []),
            ]
        logger.debug("Event %s for tenant %s (%d subscribers)", event_name, tenant_id, len(handlers))
        for handler in handlers:
            try:
                handler(tenant_id, event_name, payload)
            except Exception:
                logger.exception("Event subscriber failed for %s (tenant %s)", event_name, tenant_id)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()
