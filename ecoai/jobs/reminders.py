"""Appointment reminders.

``send_due_reminders`` is one pass: every confirmed appointment that has
not been reminded yet and starts within its persona's ``hours_before``
window gets a WhatsApp message, an assistant turn in the history (so the
model sees it) and ``reminder_sent=True``.  ``start_reminder_thread`` runs
passes on a daemon thread, like the metrics flusher.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from ecoai.agent import record_turn
from ecoai.models import Appointment, AppointmentStatus, Persona, utcnow
from ecoai.services.availability import to_local_wall_clock
from ecoai.services.events import EventPublisher
from ecoai.services.store import Store

logger = logging.getLogger(__name__)

REMINDER_TEMPLATE = "{greeting}, recuerda tu cita de {service} el {date} a las {time}."

# Longest window any persona can ask for; bounds the store query
_MAX_LOOKAHEAD = timedelta(days=7)

SendFunction = Callable[[str, str, Persona], None]


def build_reminder(appointment: Appointment, persona: Persona, contact_name: str) -> str:
    local = to_local_wall_clock(appointment.date_time, persona.appointment_settings.zone)
    return REMINDER_TEMPLATE.format(
        greeting=f"Hola {contact_name}" if contact_name else "Hola",
        service=appointment.service,
        date=local.strftime("%d/%m/%Y"),
        time=local.strftime("%I:%M %p"),
    )


def send_due_reminders(
    store: Store,
    events: EventPublisher,
    send: SendFunction,
    now: datetime | None = None,
) -> int:
    """Send every reminder that is due at *now*.  Returns how many were sent."""
    now = now or utcnow()
    candidates = store.list_appointments(now, now + _MAX_LOOKAHEAD)
    personas: dict[str, Persona | None] = {}
    sent = 0

    for appointment in candidates:
        if appointment.status != AppointmentStatus.CONFIRMED or appointment.reminder_sent:
            continue
        if appointment.owner_id not in personas:
            personas[appointment.owner_id] = store.get_persona(appointment.owner_id)
        persona = personas[appointment.owner_id]
        if persona is None or not persona.reminder_settings.is_enabled:
            continue
        if appointment.date_time - now > timedelta(hours=persona.reminder_settings.hours_before):
            continue

        contact = store.get_contact(persona.id, appointment.customer_phone)
        name = contact.name if contact and contact.has_known_name else ""
        message = build_reminder(appointment, persona, name)
        try:
            send(appointment.customer_phone, message, persona)
        except Exception:
            logger.exception("Reminder for appointment %s could not be delivered", appointment.id)
            continue

        record_turn(store, events, persona.id, appointment.customer_phone, "assistant", message, timestamp=now)
        appointment.reminder_sent = True
        store.save_appointment(appointment)
        sent += 1
        logger.info("Reminder sent for appointment %s", appointment.id)

    return sent


def start_reminder_thread(
    store: Store,
    events: EventPublisher,
    send: SendFunction,
    interval_seconds: int,
) -> threading.Thread:
    """Start a daemon thread that runs ``send_due_reminders`` periodically."""

    def _loop():
        while True:
            try:
                send_due_reminders(store, events, send)
            except Exception:
                logger.exception("Reminder pass failed")
            time.sleep(interval_seconds)

    t = threading.Thread(target=_loop, daemon=True, name="appointment-reminders")
    t.start()
    logger.info("Reminder thread started (interval=%ds)", interval_seconds)
    return t
