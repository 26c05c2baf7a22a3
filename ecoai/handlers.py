"""Entry points that turn inbound messages into orchestrator turns.

``process_webhook`` unpacks a WhatsApp Business webhook body,
``process_incoming_message`` applies the channel rules (media filter,
human takeover, token limit) and ``process_direct_message`` serves the CLI
and the ``/api/chat`` endpoint.  All of them end in the same private path,
and deliver replies through a ``ReplyCallback(to, text, persona)``.

``send_owner_message`` and ``set_bot_active`` are the owner's side of a
human takeover: the owner writes to the customer directly and can mute the
assistant for that contact.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ecoai.agent import Orchestrator, PersonaNotFoundError, record_turn
from ecoai.config import DEFAULT_OWNER_ID
from ecoai.models import Contact, ConversationTurn, Persona
from ecoai.services.events import EventPublisher
from ecoai.services.store import Store

logger = logging.getLogger(__name__)

ReplyCallback = Callable[[str, str, Persona], None]

MEDIA_BLOCKED_REPLY = (
    "Disculpa, por el momento solo puedo leer mensajes de texto. "
    "Por favor escríbeme lo que necesitas."
)
LIMIT_REACHED_REPLY = "Service temporarily paused due to limit reached."
CART_MESSAGE_TEXT = "I'd like to order the items in my cart."

SUPPORTED_TYPES = ("text", "order")


class Outcome(str, Enum):
    RESPONSE_SENT = "RESPONSE_SENT"
    MEDIA_BLOCKED = "MEDIA_BLOCKED"
    BOT_DISABLED = "BOT_DISABLED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"


@dataclass
class InboundMessage:
    sender: str
    kind: str = "text"
    text: str = ""
    context: dict[str, Any] | None = None

    @classmethod
    def from_webhook(cls, raw: dict[str, Any]) -> InboundMessage:
        """Build from one entry of ``value.messages`` in a Cloud API webhook."""
        kind = raw.get("type", "text")
        sender = str(raw.get("from", ""))
        if kind == "text":
            return cls(sender=sender, kind=kind, text=(raw.get("text") or {}).get("body", ""))
        if kind == "order":
            order = raw.get("order") or {}
            cart = [
                {
                    "productIdentifier": item.get("product_retailer_id"),
                    "quantity": item.get("quantity", 1),
                    "itemPrice": item.get("item_price"),
                    "currency": item.get("currency"),
                }
                for item in order.get("product_items", [])
            ]
            return cls(
                sender=sender,
                kind=kind,
                text=order.get("text") or CART_MESSAGE_TEXT,
                context={"cart": cart, "catalogId": order.get("catalog_id")},
            )
        return cls(sender=sender, kind=kind)


def iter_webhook_messages(payload: dict[str, Any]):
    """Yield ``(phone_number_id, raw_message)`` pairs; status updates are skipped."""
    for entry in payload.get("entry", []):
        for change in entry.get("changes", []):
            value = change.get("value") or {}
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id", "")
            for raw in value.get("messages", []):
                yield phone_number_id, raw


class MessageHandler:
    def __init__(
        self,
        store: Store,
        events: EventPublisher,
        orchestrator: Orchestrator,
        default_owner_id: str = DEFAULT_OWNER_ID,
    ) -> None:
        self._store = store
        self._events = events
        self._orchestrator = orchestrator
        self._default_owner_id = default_owner_id

    def resolve_owner(self, phone_number_id: str) -> str | None:
        persona = self._store.find_persona_by_phone_number_id(phone_number_id)
        if persona is not None:
            return persona.id
        return self._default_owner_id or None

    # ── Public entry points ──────────────────────────────────────────

    def process_webhook(self, payload: dict[str, Any], reply: ReplyCallback) -> list[Outcome]:
        """Handle every message in the body; one failing message does not stop the rest."""
        outcomes = []
        for phone_number_id, raw in iter_webhook_messages(payload):
            owner_id = self.resolve_owner(phone_number_id)
            if owner_id is None:
                logger.warning("No persona for phone number id %s; message dropped", phone_number_id)
                outcomes.append(Outcome.IGNORED)
                continue
            message = InboundMessage.from_webhook(raw)
            try:
                outcomes.append(self.process_incoming_message(message, owner_id, reply))
            except Exception:
                logger.exception("Failed to handle message from %s (owner %s)", message.sender, owner_id)
                outcomes.append(Outcome.FAILED)
        return outcomes

    def process_incoming_message(self, message: InboundMessage, owner_id: str, reply: ReplyCallback) -> Outcome:
        if not message.sender:
            logger.warning("Inbound message without sender ignored")
            return Outcome.IGNORED

        persona = self._require_persona(owner_id)
        if message.kind not in SUPPORTED_TYPES:
            logger.info("Blocked %s message from %s", message.kind, message.sender)
            reply(message.sender, MEDIA_BLOCKED_REPLY, persona)
            record_turn(
                self._store, self._events, owner_id, message.sender, "system",
                f"User sent an unsupported {message.kind} message; asked them to write text instead.",
            )
            return Outcome.MEDIA_BLOCKED

        if not message.text.strip() and not message.context:
            return Outcome.IGNORED
        return self._handle(persona, message.sender, message.text, message.context, reply)

    def process_direct_message(
        self,
        phone_number: str,
        text: str,
        owner_id: str,
        reply: ReplyCallback,
        structured_context: dict[str, Any] | None = None,
    ) -> Outcome:
        message = InboundMessage(sender=phone_number, text=text, context=structured_context)
        return self.process_incoming_message(message, owner_id, reply)

    # ── Human takeover ───────────────────────────────────────────────

    def send_owner_message(
        self, owner_id: str, phone_number: str, text: str, reply: ReplyCallback,
    ) -> ConversationTurn:
        """Deliver a message written by the owner and store it as an ``owner`` turn.

        Delivery errors propagate and nothing is stored.  The bot flag is
        left as it is; use ``set_bot_active`` to silence the assistant.
        """
        persona = self._require_persona(owner_id)
        reply(phone_number, text, persona)
        self._store.get_or_create_contact(owner_id, phone_number)
        logger.info("Owner %s wrote to %s", owner_id, phone_number)
        return record_turn(self._store, self._events, owner_id, phone_number, "owner", text)

    def set_bot_active(self, owner_id: str, phone_number: str, active: bool) -> Contact:
        """Switch the assistant on or off for one contact."""
        self._require_persona(owner_id)
        contact = self._store.get_or_create_contact(owner_id, phone_number)
        contact.is_bot_active = active
        self._store.save_contact(contact)
        logger.info("Bot %s for %s (owner %s)", "enabled" if active else "disabled", phone_number, owner_id)
        return contact

    # ── Internal ─────────────────────────────────────────────────────

    def _require_persona(self, owner_id: str) -> Persona:
        persona = self._store.get_persona(owner_id)
        if persona is None:
            raise PersonaNotFoundError(f"No persona for owner {owner_id}")
        return persona

    def _handle(
        self,
        persona: Persona,
        sender: str,
        text: str,
        context: dict[str, Any] | None,
        reply: ReplyCallback,
    ) -> Outcome:
        contact = self._store.get_or_create_contact(persona.id, sender)
        if not contact.is_bot_active:
            # A human is handling this contact: keep the history, stay silent
            record_turn(self._store, self._events, persona.id, sender, "user", text)
            logger.info("Bot disabled for %s; message stored only", sender)
            return Outcome.BOT_DISABLED

        if persona.has_exceeded_token_limit or not persona.subscription.is_active:
            logger.warning(
                "Owner %s is over its token limit (%d/%d)",
                persona.id, persona.usage.total_tokens, persona.subscription.token_limit,
            )
            reply(sender, LIMIT_REACHED_REPLY, persona)
            return Outcome.LIMIT_EXCEEDED

        result = self._orchestrator.respond(sender, text, persona.id, structured_context=context)
        if result.text:
            reply(sender, result.text, persona)
        else:
            logger.warning("Empty reply for %s; nothing delivered", sender)
        return Outcome.RESPONSE_SENT
