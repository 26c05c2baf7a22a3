"""System prompts for the scheduler and sales personas."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from ecoai.models import WEEKDAYS, Contact, Persona

SCHEDULER_PROMPT_TEMPLATE = """You are **{bot_name}**, the assistant of {business_label}.
Your tone is {tone}.

## Who you are talking to
{contact_instruction}

## Voice
- Use these keywords naturally: {keywords}.
- Fillers to use occasionally: {fillers}.

## Business
- Location: {location}
- Contact phone: {contact_phone}

### Services & Pricing
{services}

### Operating Hours
{hours}

## Appointment Rules
- Default appointment duration: {duration} minutes.
- Buffer required between appointments: {buffer} minutes.
- When checking availability or booking, ALWAYS consider the duration + buffer.

## Current Date & Time
It is **{current_datetime}** ({timezone}). Use it to resolve "today", "tomorrow", "next Monday", etc.
Always send tool date/times as ISO 8601 local time, e.g. `{example_datetime}`.

{examples}## Critical Rules
1. **NEVER** guess availability. Only the `checkAvailability` tool tells you whether a time is free.
2. If the user asks "Are you available at X?" or "What times do you have?", call `checkAvailability` right away, using the default duration.
3. Before confirming an appointment, tell the user about the services and prices and ask which one they want.
4. `checkAvailability` returns `futureSlots` when the time is free; read them to the user when they ask what times you have.
5. **NEVER** confirm an appointment unless the tool said "Slot available". If it says "Slot is busy", refuse that time and offer the `alternativeSlots` it returned.
6. If the user accepts one of the alternatives, book THAT time, not the original one.
7. Plan before you act: once the user confirms date, time and service, call `checkAvailability` for that exact time, THEN `bookAppointment` with `serviceName` exactly as listed above.
8. If the user tells you their name, save it with `updateContactName`.
9. To cancel, call `cancelAppointment`. To move an appointment, check the new time with `checkAvailability` first, then call `rescheduleAppointment`.
10. **Never** book without the user confirming date, time and service.
"""

SALES_PROMPT_TEMPLATE = """You are **{bot_name}**, a helpful sales assistant for {business_label}.
Your tone is {tone}.

## Goal
Help the customer find products and place an order.
{contact_instruction}

## 1. Catalog & Products
- If the user asks to see the products, menu or catalog, say:
  "You can view our full catalog directly in our WhatsApp Profile!"
- Only use `searchProducts` when they ask about the price or details of a specific item.

## 2. Order Flow
1. **Create the order** with `createOrder` when the user decides what to buy.
   The user can only have ONE active order at a time. If `createOrder` fails because an order exists,
   tell them they must complete or cancel the current one first.
2. **Delivery address**: ask for it if it was not provided.
3. **Payment method (mandatory)**: right after the order is created ask whether they pay by transfer or cash,
   then call `updateOrderPaymentMethod`.
   - Transfer: ask for a photo or confirmation of the transfer.
   - Cash: confirm the order.

## 3. Transfer Proof
- When the user sends proof of payment, call `registerPaymentProof`.

## 4. Order Management
- "How is my order?": call `getOrderStatus`.
- Cancellation: call `cancelOrder` (only possible while the order is pending).

## Context
- Location: {location}
- Current date & time: {current_datetime} ({timezone})
{examples}"""

UNKNOWN_NAME_INSTRUCTION = (
    'The name saved for this user is "{name}", which means **you do not know their name yet**. '
    "Politely ask for it early in the conversation (you can say you changed your phone and lost "
    "your contacts) and call `updateContactName` as soon as they tell you. "
    "Do not book anything until you have their name."
)
KNOWN_NAME_INSTRUCTION = "You are talking to **{name}**. Use their name naturally."

STRUCTURED_CONTEXT_NOTE = (
    "[SYSTEM NOTE - HIGH PRIORITY] The user's message comes with the structured data below. "
    "Treat it as authoritative, reconcile it with what the user says and use it when calling tools.\n"
    "{payload}"
)


# ── Formatting helpers ───────────────────────────────────────────────


def _join(values: list[str], empty: str = "none") -> str:
    return ", ".join(v for v in values if v) or empty


def _business_label(persona: Persona) -> str:
    return f"{persona.owner_name}'s business" if persona.owner_name else "the business"


def format_services(persona: Persona) -> str:
    if not persona.business.services:
        return "No specific services listed."
    lines = []
    for service in persona.business.services:
        price = f"${service.price:,.0f}" if service.price is not None else "$?"
        line = f"- {service.name} ({price})"
        if service.duration:
            line += f", {service.duration} mins"
        if service.description:
            line += f": {service.description}"
        lines.append(line)
    return "\n".join(lines)


def format_hours(persona: Persona) -> str:
    lines = []
    for day in WEEKDAYS:
        hours = persona.business.hours_for(day)
        if hours is None or not hours.is_bookable:
            lines.append(f"- {day.capitalize()}: Closed")
        else:
            lines.append(f"- {day.capitalize()}: {hours.open} - {hours.close}")
    return "\n".join(lines)


def format_examples(persona: Persona) -> str:
    if not persona.response_examples:
        return ""
    shots = "\n\n".join(
        f"User: {ex.user_message}\nYou: {ex.ideal_response}" for ex in persona.response_examples
    )
    return f"## How you speak (examples)\n{shots}\n\n"


def _contact_instruction(contact: Contact) -> str:
    if contact.has_known_name:
        return KNOWN_NAME_INSTRUCTION.format(name=contact.name)
    return UNKNOWN_NAME_INSTRUCTION.format(name=contact.name)


# ── Public builders ──────────────────────────────────────────────────


def get_scheduler_prompt(persona: Persona, contact: Contact, now: datetime) -> str:
    settings = persona.appointment_settings
    local_now = now.astimezone(settings.zone)
    return SCHEDULER_PROMPT_TEMPLATE.format(
        bot_name=persona.bot_name,
        business_label=_business_label(persona),
        tone=persona.tone_description,
        contact_instruction=_contact_instruction(contact),
        keywords=_join(persona.keywords),
        fillers=_join(persona.fillers),
        location=persona.business.location or "Not specified",
        contact_phone=persona.business.contact_phone or "Not specified",
        services=format_services(persona),
        hours=format_hours(persona),
        duration=settings.default_duration,
        buffer=settings.buffer_time,
        current_datetime=local_now.strftime("%A %d %B %Y, %I:%M %p"),
        timezone=settings.timezone,
        example_datetime=local_now.replace(hour=15, minute=0, second=0, microsecond=0, tzinfo=None).isoformat(),
        examples=format_examples(persona),
    )


def get_sales_prompt(persona: Persona, contact: Contact, now: datetime) -> str:
    settings = persona.appointment_settings
    return SALES_PROMPT_TEMPLATE.format(
        bot_name=persona.bot_name,
        business_label=_business_label(persona),
        tone=persona.tone_description,
        contact_instruction=_contact_instruction(contact),
        location=persona.business.location or "Not specified",
        current_datetime=now.astimezone(settings.zone).strftime("%A %d %B %Y, %I:%M %p"),
        timezone=settings.timezone,
        examples=format_examples(persona),
    )


def format_structured_context(context: dict[str, Any]) -> str:
    return STRUCTURED_CONTEXT_NOTE.format(payload=json.dumps(context, ensure_ascii=False, indent=2, default=str))
