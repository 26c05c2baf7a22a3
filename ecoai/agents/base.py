"""Agent strategy interface and the pieces shared by every strategy.

A strategy decides three things for a persona: the system prompt, the tool
schemas advertised to the model, and the functions that execute those
tools for one conversation turn.  Tool functions take the model's
arguments as keyword arguments and always return a string.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from ecoai.models import AgentType, Contact, Persona, utcnow
from ecoai.services.events import EventPublisher
from ecoai.services.store import Store
from ecoai.tools.results import ActionResult

logger = logging.getLogger(__name__)

ToolFunction = Callable[..., str]

UPDATE_CONTACT_NAME_SCHEMA: dict[str, Any] = {
    "name": "updateContactName",
    "description": "Save the user's name once they tell you what it is.",
    "parameters": {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "The user's name."},
        },
        "required": ["name"],
    },
}


@dataclass
class ToolContext:
    """Everything a tool needs for the current turn."""

    store: Store
    events: EventPublisher
    persona: Persona
    contact: Contact
    clock: Callable[[], datetime] = field(default=utcnow)

    @property
    def phone_number(self) -> str:
        return self.contact.phone_number

    def refresh_contact(self) -> Contact:
        """Reload the contact; tools mutate it through the store."""
        latest = self.store.get_contact(self.persona.id, self.contact.phone_number)
        if latest is not None:
            self.contact = latest
        return self.contact


class AgentStrategy(ABC):
    agent_type: ClassVar[AgentType]

    @abstractmethod
    def system_prompt(self, persona: Persona, contact: Contact, now: datetime | None = None) -> str: ...

    @abstractmethod
    def tool_schemas(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def tool_implementations(self, context: ToolContext) -> dict[str, ToolFunction]: ...


def update_contact_name(context: ToolContext, name: str = "") -> str:
    """Shared ``updateContactName`` implementation."""
    cleaned = (name or "").strip()
    if not cleaned:
        return ActionResult.fail("No name was provided.").to_tool_content()
    try:
        contact = context.refresh_contact()
        contact.name = cleaned
        context.store.save_contact(contact)
        logger.info("Contact %s renamed to %r", contact.phone_number, cleaned)
        return ActionResult.ok(f"Contact name updated to {cleaned}.").to_tool_content()
    except Exception:
        logger.exception("Failed to update name for %s", context.phone_number)
        return ActionResult.fail("Failed to save the name.").to_tool_content()
