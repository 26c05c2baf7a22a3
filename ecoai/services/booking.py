"""Appointment lifecycle: book, cancel and reschedule for one contact.

Every public method returns an ``ActionResult``; failures are logged and
turned into apology results so the conversation can continue.  The
"one current appointment per contact" rule is advisory: it is kept by
pointing ``Contact.current_appointment_id`` at the latest booking, without
locking against concurrent turns.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from ecoai.models import Appointment, AppointmentStatus, Contact, Persona
from ecoai.services.availability import parse_requested_datetime, to_local_wall_clock
from ecoai.services.events import NEW_NOTIFICATION, EventPublisher
from ecoai.services.store import Store
from ecoai.tools.results import ActionResult

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Cancelled by customer via chat"
_DISPLAY_FORMAT = "%A %d %B %Y at %I:%M %p"


def format_local(instant: datetime, persona: Persona) -> str:
    return to_local_wall_clock(instant, persona.appointment_settings.zone).strftime(_DISPLAY_FORMAT)


class BookingManager:
    def __init__(self, store: Store, events: EventPublisher) -> None:
        self._store = store
        self._events = events

    # ── Internal helpers ─────────────────────────────────────────────

    def _require_contact(self, persona: Persona, contact_phone: str) -> Contact:
        contact = self._store.get_contact(persona.id, contact_phone)
        if contact is None:
            raise LookupError(f"No contact {contact_phone} for owner {persona.id}")
        return contact

    def _current_appointment(self, contact: Contact) -> Appointment | None:
        if not contact.current_appointment_id:
            return None
        appointment = self._store.get_appointment(contact.current_appointment_id)
        if appointment is None or appointment.status == AppointmentStatus.CANCELLED:
            return None
        return appointment

    def _notify(self, persona: Persona, kind: str, title: str, message: str, appointment: Appointment) -> None:
        payload: dict[str, Any] = {
            "type": kind,
            "title": title,
            "message": message,
            "relatedId": appointment.id,
            "appointment": appointment.model_dump(mode="json"),
        }
        self._events.publish(persona.id, NEW_NOTIFICATION, payload)

    # ── Public API ───────────────────────────────────────────────────

    def book(
        self,
        date_time: str | datetime,
        service_name: str,
        contact_phone: str,
        notes: str | None,
        persona: Persona,
    ) -> ActionResult:
        """Create a confirmed appointment and make it the contact's current one."""
        try:
            settings = persona.appointment_settings
            start = parse_requested_datetime(date_time, settings.zone)
            service = persona.business.find_service(service_name)
            minutes = service.duration if service and service.duration else settings.default_duration

            contact = self._require_contact(persona, contact_phone)
            appointment = Appointment(
                owner_id=persona.id,
                contact_id=contact.id,
                customer_phone=contact_phone,
                date_time=start,
                end_time=start + timedelta(minutes=minutes),
                service=service.name if service else service_name,
                notes=notes or "",
            )
            self._store.save_appointment(appointment)

            contact.current_appointment_id = appointment.id
            self._store.save_contact(contact)

            when = format_local(start, persona)
            logger.info("Booked appointment %s for %s at %s", appointment.id, contact_phone, start.isoformat())
            self._notify(
                persona, "appointment_booked", "New appointment",
                f"{contact.name} booked {appointment.service} for {when}.", appointment,
            )
            return ActionResult.ok(f"Appointment confirmed for {when} ({minutes} mins).")
        except Exception:
            logger.exception("Failed to book appointment for %s", contact_phone)
            return ActionResult.fail("Failed to book appointment. Please try again.")

    def cancel(self, contact_phone: str, reason: str | None, persona: Persona) -> ActionResult:
        try:
            contact = self._require_contact(persona, contact_phone)
            appointment = self._current_appointment(contact)
            if appointment is None:
                return ActionResult.fail("You don't have any upcoming appointment to cancel.")

            reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
            appointment.status = AppointmentStatus.CANCELLED
            appointment.notes = "\n".join(filter(None, [appointment.notes, f"Cancellation reason: {reason}"]))
            self._store.save_appointment(appointment)

            contact.current_appointment_id = None
            self._store.save_contact(contact)

            when = format_local(appointment.date_time, persona)
            logger.info("Cancelled appointment %s (%s)", appointment.id, reason)
            self._notify(
                persona, "appointment_cancelled", "Appointment cancelled",
                f"{contact.name} cancelled the appointment of {when}. Reason: {reason}", appointment,
            )
            return ActionResult.ok(f"Your appointment for {when} has been cancelled.")
        except Exception:
            logger.exception("Failed to cancel appointment for %s", contact_phone)
            return ActionResult.fail("Failed to cancel the appointment. Please try again.")

    def reschedule(self, contact_phone: str, new_date_time: str | datetime, persona: Persona) -> ActionResult:
        """Move the current appointment, keeping its duration.

        Availability of the new time is the caller's job (checkAvailability).
        """
        try:
            contact = self._require_contact(persona, contact_phone)
            appointment = self._current_appointment(contact)
            if appointment is None:
                return ActionResult.fail("You don't have any upcoming appointment to reschedule.")

            duration = appointment.end_time - appointment.date_time
            new_start = parse_requested_datetime(new_date_time, persona.appointment_settings.zone)
            previous = format_local(appointment.date_time, persona)

            appointment.date_time = new_start
            appointment.end_time = new_start + duration
            appointment.status = AppointmentStatus.CONFIRMED
            appointment.reminder_sent = False
            # Re-run the interval check on the mutated model
            appointment = Appointment.model_validate(appointment.model_dump())
            self._store.save_appointment(appointment)

            when = format_local(new_start, persona)
            logger.info("Rescheduled appointment %s to %s", appointment.id, new_start.isoformat())
            self._notify(
                persona, "appointment_rescheduled", "Appointment rescheduled",
                f"{contact.name} moved the appointment of {previous} to {when}.", appointment,
            )
            return ActionResult.ok(f"Your appointment has been rescheduled to {when}.")
        except Exception:
            logger.exception("Failed to reschedule appointment for %s", contact_phone)
            return ActionResult.fail("Failed to reschedule the appointment. Please try again.")
