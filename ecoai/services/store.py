"""Persistence boundary for personas, contacts, history, appointments and orders.

``Store`` is the abstract interface the rest of the code depends on.
``InMemoryStore`` is the thread-safe implementation used by the CLI, the
dev server and the test suite.  It hands out deep copies, so callers must
``save_*`` what they mutate, exactly as with a document database.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from ecoai.models import (
    Appointment,
    Contact,
    ConversationTurn,
    Order,
    OrderStatus,
    Persona,
    Product,
    Usage,
    utcnow,
)

logger = logging.getLogger(__name__)


class Store(ABC):
    """Abstract store.  Implementations must make ``increment_usage`` atomic."""

    # ── Personas ─────────────────────────────────────────────────────

    @abstractmethod
    def get_persona(self, owner_id: str) -> Persona | None: ...

    @abstractmethod
    def find_persona_by_phone_number_id(self, phone_number_id: str) -> Persona | None: ...

    @abstractmethod
    def save_persona(self, persona: Persona) -> None: ...

    @abstractmethod
    def increment_usage(self, owner_id: str, usage: Usage) -> None: ...

    # ── Contacts ─────────────────────────────────────────────────────

    @abstractmethod
    def get_contact(self, owner_id: str, phone_number: str) -> Contact | None: ...

    @abstractmethod
    def get_contact_by_id(self, contact_id: str) -> Contact | None: ...

    @abstractmethod
    def save_contact(self, contact: Contact) -> None: ...

    def get_or_create_contact(self, owner_id: str, phone_number: str) -> Contact:
        """Return the contact for (owner, phone), creating it lazily, and touch it."""
        contact = self.get_contact(owner_id, phone_number)
        if contact is None:
            contact = Contact(owner_id=owner_id, phone_number=phone_number)
            logger.info("Created contact %s for owner %s", phone_number, owner_id)
        contact.last_interaction = utcnow()
        self.save_contact(contact)
        return contact

    # ── Conversation history ─────────────────────────────────────────

    @abstractmethod
    def add_turn(self, turn: ConversationTurn) -> None: ...

    @abstractmethod
    def recent_turns(self, owner_id: str, phone_number: str, limit: int) -> list[ConversationTurn]:
        """Return the last *limit* turns in chronological order."""

    # ── Appointments ─────────────────────────────────────────────────

    @abstractmethod
    def save_appointment(self, appointment: Appointment) -> None: ...

    @abstractmethod
    def get_appointment(self, appointment_id: str) -> Appointment | None: ...

    @abstractmethod
    def list_appointments(
        self, start: datetime, end: datetime, owner_id: str | None = None,
    ) -> list[Appointment]:
        """Appointments (any status) whose start lies in [start, end)."""

    # ── Catalog & orders ─────────────────────────────────────────────

    @abstractmethod
    def save_product(self, product: Product) -> None: ...

    @abstractmethod
    def list_products(self, owner_id: str) -> list[Product]: ...

    def search_products(self, owner_id: str, keyword: str, limit: int = 5) -> list[Product]:
        needle = keyword.strip().lower()
        matches = [p for p in self.list_products(owner_id) if needle in p.name.lower()]
        return matches[:limit]

    @abstractmethod
    def save_order(self, order: Order) -> None: ...

    @abstractmethod
    def get_order(self, order_id: str) -> Order | None: ...

    @abstractmethod
    def latest_order(
        self, owner_id: str, contact_id: str, statuses: Iterable[OrderStatus],
    ) -> Order | None:
        """Most recently created order of the contact with one of *statuses*."""

    @abstractmethod
    def list_orders(self, owner_id: str, status: OrderStatus | None = None) -> list[Order]:
        """Orders of an owner, newest first, optionally filtered by *status*."""


class InMemoryStore(Store):
    """Dictionary-backed store guarded by a single re-entrant lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._personas: dict[str, Persona] = {}
        self._contacts: dict[tuple[str, str], Contact] = {}
        self._turns: dict[tuple[str, str], list[ConversationTurn]] = {}
        self._appointments: dict[str, Appointment] = {}
        self._products: dict[str, Product] = {}
        self._orders: dict[str, Order] = {}

    @classmethod
    def from_seed_file(cls, path: str | Path) -> InMemoryStore:
        """Load personas and products from a JSON file.

        Expected shape: ``{"personas": [...], "products": [...]}`` with
        field names matching the models.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls()
        for raw in data.get("personas", []):
            store.save_persona(Persona.model_validate(raw))
        for raw in data.get("products", []):
            store.save_product(Product.model_validate(raw))
        logger.info(
            "Seeded store from %s: %d personas, %d products",
            path, len(store._personas), len(store._products),
        )
        return store

    # ── Personas ─────────────────────────────────────────────────────

    def get_persona(self, owner_id: str) -> Persona | None:
        with self._lock:
            persona = self._personas.get(owner_id)
            return persona.model_copy(deep=True) if persona else None

    def find_persona_by_phone_number_id(self, phone_number_id: str) -> Persona | None:
        if not phone_number_id:
            return None
        with self._lock:
            for persona in self._personas.values():
                if persona.whatsapp.phone_number_id == phone_number_id:
                    return persona.model_copy(deep=True)
        return None

    def list_personas(self) -> list[Persona]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._personas.values()]

    def save_persona(self, persona: Persona) -> None:
        with self._lock:
            self._personas[persona.id] = persona.model_copy(deep=True)

    def increment_usage(self, owner_id: str, usage: Usage) -> None:
        with self._lock:
            persona = self._personas.get(owner_id)
            if persona is None:
                logger.warning("Usage increment for unknown owner %s dropped", owner_id)
                return
            current = persona.usage
            current.prompt_tokens += usage.prompt_tokens
            current.completion_tokens += usage.completion_tokens
            current.total_tokens += usage.total_tokens

    # ── Contacts ─────────────────────────────────────────────────────

    def get_contact(self, owner_id: str, phone_number: str) -> Contact | None:
        with self._lock:
            contact = self._contacts.get((owner_id, phone_number))
            return contact.model_copy(deep=True) if contact else None

    def get_contact_by_id(self, contact_id: str) -> Contact | None:
        with self._lock:
            contact = next((c for c in self._contacts.values() if c.id == contact_id), None)
            return contact.model_copy(deep=True) if contact else None

    def save_contact(self, contact: Contact) -> None:
        with self._lock:
            self._contacts[(contact.owner_id, contact.phone_number)] = contact.model_copy(deep=True)

    # ── Conversation history ─────────────────────────────────────────

    def add_turn(self, turn: ConversationTurn) -> None:
        with self._lock:
            key = (turn.owner_id, turn.phone_number)
            self._turns.setdefault(key, []).append(turn.model_copy(deep=True))

    def recent_turns(self, owner_id: str, phone_number: str, limit: int) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        with self._lock:
            turns = sorted(self._turns.get((owner_id, phone_number), []), key=lambda t: t.timestamp)
            return [t.model_copy(deep=True) for t in turns[-limit:]]

    # ── Appointments ─────────────────────────────────────────────────

    def save_appointment(self, appointment: Appointment) -> None:
        with self._lock:
            self._appointments[appointment.id] = appointment.model_copy(deep=True)

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
            return appointment.model_copy(deep=True) if appointment else None

    def list_appointments(
        self, start: datetime, end: datetime, owner_id: str | None = None,
    ) -> list[Appointment]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._appointments.values()
                if start <= a.date_time < end and (owner_id is None or a.owner_id == owner_id)
            ]

    # ── Catalog & orders ─────────────────────────────────────────────

    def save_product(self, product: Product) -> None:
        with self._lock:
            self._products[product.id] = product.model_copy(deep=True)

    def list_products(self, owner_id: str) -> list[Product]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._products.values() if p.owner_id == owner_id]

    def save_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order.model_copy(deep=True)

    def get_order(self, order_id: str) -> Order | None:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def latest_order(
        self, owner_id: str, contact_id: str, statuses: Iterable[OrderStatus],
    ) -> Order | None:
        wanted = set(statuses)
        latest: Order | None = None
        with self._lock:
            for order in self._orders.values():
                if order.owner_id != owner_id or order.contact_id != contact_id:
                    continue
                if order.status not in wanted:
                    continue
                # ">=" so that insertion order breaks timestamp ties
                if latest is None or order.created_at >= latest.created_at:
                    latest = order
            return latest.model_copy(deep=True) if latest else None

    def list_orders(self, owner_id: str, status: OrderStatus | None = None) -> list[Order]:
        with self._lock:
            orders = [
                o.model_copy(deep=True)
                for o in self._orders.values()
                if o.owner_id == owner_id and (status is None or o.status == status)
            ]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)
