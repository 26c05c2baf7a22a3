"""Scheduler strategy: appointment booking on top of the availability engine."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ecoai.agents.base import UPDATE_CONTACT_NAME_SCHEMA, AgentStrategy, ToolContext, ToolFunction, update_contact_name
from ecoai.models import AgentType, Contact, Persona, utcnow
from ecoai.prompts import get_scheduler_prompt
from ecoai.services.availability import AvailabilityService
from ecoai.services.booking import BookingManager
from ecoai.tools.results import AvailabilityResult

logger = logging.getLogger(__name__)

SCHEDULER_TOOLS: list[dict[str, Any]] = [
    {
        "name": "checkAvailability",
        "description": (
            "Check availability for a specific date and time. "
            "If busy, returns alternative free slots for that day."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "dateTime": {
                    "type": "string",
                    "description": "The date and time to check, ISO 8601 (e.g. 2024-06-10T15:00:00).",
                },
            },
            "required": ["dateTime"],
        },
    },
    {
        "name": "bookAppointment",
        "description": "Book an appointment. Only call it after checkAvailability returned 'Slot available'.",
        "parameters": {
            "type": "object",
            "properties": {
                "dateTime": {"type": "string", "description": "Start of the appointment, ISO 8601."},
                "serviceName": {"type": "string", "description": "Service name exactly as listed."},
                "notes": {"type": "string", "description": "Optional notes for the business."},
            },
            "required": ["dateTime", "serviceName"],
        },
    },
    UPDATE_CONTACT_NAME_SCHEMA,
    {
        "name": "cancelAppointment",
        "description": "Cancel the user's current appointment.",
        "parameters": {
            "type": "object",
            "properties": {
                "reason": {"type": "string", "description": "Why the user is cancelling, if they said."},
            },
            "required": [],
        },
    },
    {
        "name": "rescheduleAppointment",
        "description": "Move the user's current appointment to a new date and time (check availability first).",
        "parameters": {
            "type": "object",
            "properties": {
                "newDateTime": {"type": "string", "description": "New start time, ISO 8601."},
            },
            "required": ["newDateTime"],
        },
    },
]


class SchedulerAgent(AgentStrategy):
    agent_type = AgentType.SCHEDULER

    def system_prompt(self, persona: Persona, contact: Contact, now: datetime | None = None) -> str:
        return get_scheduler_prompt(persona, contact, now or utcnow())

    def tool_schemas(self) -> list[dict[str, Any]]:
        return SCHEDULER_TOOLS

    def tool_implementations(self, context: ToolContext) -> dict[str, ToolFunction]:
        availability = AvailabilityService(context.store, clock=context.clock)
        booking = BookingManager(context.store, context.events)

        def check_availability(dateTime: str = "") -> str:  # noqa: N803
            try:
                return availability.check(dateTime, context.persona).to_tool_content()
            except Exception:
                logger.exception("Availability check failed for %r", dateTime)
                return AvailabilityResult(
                    available=False, message="Failed to check availability.",
                ).to_tool_content()

        def book_appointment(dateTime: str = "", serviceName: str = "", notes: str | None = None) -> str:  # noqa: N803
            result = booking.book(dateTime, serviceName, context.phone_number, notes, context.persona)
            context.refresh_contact()
            return result.to_tool_content()

        def cancel_appointment(reason: str | None = None) -> str:
            result = booking.cancel(context.phone_number, reason, context.persona)
            context.refresh_contact()
            return result.to_tool_content()

        def reschedule_appointment(newDateTime: str = "") -> str:  # noqa: N803
            return booking.reschedule(context.phone_number, newDateTime, context.persona).to_tool_content()

        return {
            "checkAvailability": check_availability,
            "bookAppointment": book_appointment,
            "updateContactName": lambda name="": update_contact_name(context, name),
            "cancelAppointment": cancel_appointment,
            "rescheduleAppointment": reschedule_appointment,
        }
