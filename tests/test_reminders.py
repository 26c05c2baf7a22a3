"""Tests for the appointment reminder job."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from ecoai.jobs.reminders import build_reminder, send_due_reminders
from ecoai.models import Appointment, AppointmentStatus
from ecoai.services.events import NEW_MESSAGE

PHONE = "573001112233"


@pytest.fixture
def send():
    return MagicMock()


@pytest.fixture
def book(store, persona, contact, now):
    """Save an appointment starting *hours* after ``now``."""

    def _book(hours: float, **overrides) -> Appointment:
        start = now + timedelta(hours=hours)
        fields = {
            "owner_id": persona.id,
            "contact_id": contact.id,
            "customer_phone": PHONE,
            "date_time": start,
            "end_time": start + timedelta(minutes=30),
            "service": "Haircut",
        }
        fields.update(overrides)
        appointment = Appointment(**fields)
        store.save_appointment(appointment)
        return appointment

    return _book


class TestBuildReminder:
    def test_message_in_local_time(self, persona, now):
        start = now.replace(hour=15)
        appointment = Appointment(
            owner_id=persona.id, contact_id="c", customer_phone=PHONE,
            date_time=start, end_time=start + timedelta(minutes=30), service="Haircut",
        )
        assert build_reminder(appointment, persona, "Ana") == (
            "Hola Ana, recuerda tu cita de Haircut el 10/06/2024 a las 03:00 PM."
        )

    def test_without_name(self, persona, now):
        start = now.replace(hour=9)
        appointment = Appointment(
            owner_id=persona.id, contact_id="c", customer_phone=PHONE,
            date_time=start, end_time=start + timedelta(minutes=30), service="Manicure",
        )
        assert build_reminder(appointment, persona, "").startswith("Hola, recuerda")


class TestSendDueReminders:
    def test_due_appointment_is_reminded_once(self, store, events, send, book, persona, now):
        appointment = book(hours=3)

        assert send_due_reminders(store, events, send, now=now) == 1
        assert send_due_reminders(store, events, send, now=now) == 0

        send.assert_called_once()
        to, text, used_persona = send.call_args.args
        assert to == PHONE
        assert "Haircut" in text
        assert used_persona.id == persona.id
        assert store.get_appointment(appointment.id).reminder_sent is True

    def test_reminder_is_added_to_history(self, store, events, send, book, persona, published, now):
        book(hours=3)
        send_due_reminders(store, events, send, now=now)

        turn = store.recent_turns(persona.id, PHONE, 5)[-1]
        assert turn.role == "assistant"
        assert turn.content.startswith("Hola")
        assert published[-1][1] == NEW_MESSAGE

    def test_known_name_is_used(self, store, events, send, book, contact, now):
        contact.name = "Ana"
        store.save_contact(contact)
        book(hours=3)
        send_due_reminders(store, events, send, now=now)
        assert send.call_args.args[1].startswith("Hola Ana,")

    def test_outside_window_is_skipped(self, store, events, send, book, now):
        book(hours=30)
        assert send_due_reminders(store, events, send, now=now) == 0
        send.assert_not_called()

    def test_window_follows_persona_setting(self, store, events, send, book, persona, now):
        persona.reminder_settings.hours_before = 48
        store.save_persona(persona)
        book(hours=30)
        assert send_due_reminders(store, events, send, now=now) == 1

    def test_past_and_cancelled_are_skipped(self, store, events, send, book, now):
        book(hours=-2)
        book(hours=2, status=AppointmentStatus.CANCELLED)
        assert send_due_reminders(store, events, send, now=now) == 0

    def test_disabled_reminders_are_skipped(self, store, events, send, book, persona, now):
        persona.reminder_settings.is_enabled = False
        store.save_persona(persona)
        book(hours=2)
        assert send_due_reminders(store, events, send, now=now) == 0

    def test_failed_delivery_is_retried_next_pass(self, store, events, send, book, now):
        appointment = book(hours=2)
        send.side_effect = [RuntimeError("Graph API down"), None]

        assert send_due_reminders(store, events, send, now=now) == 0
        assert store.get_appointment(appointment.id).reminder_sent is False
        assert send_due_reminders(store, events, send, now=now) == 1
