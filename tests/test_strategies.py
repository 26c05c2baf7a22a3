"""Tests for agent strategies, their tools and the system prompts."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from ecoai.agents.base import ToolContext, update_contact_name
from ecoai.agents.registry import DEFAULT_AGENT_TYPE, resolve_agent_type, select_strategy
from ecoai.agents.sales import SALES_TOOLS, SalesAgent
from ecoai.agents.scheduler import SCHEDULER_TOOLS, SchedulerAgent
from ecoai.models import AgentType, DayHours, ResponseExample
from ecoai.prompts import format_hours, format_services, format_structured_context


@pytest.fixture
def scheduler_tools(store, events, persona, contact, clock):
    context = ToolContext(store=store, events=events, persona=persona, contact=contact, clock=clock)
    return SchedulerAgent().tool_implementations(context)


@pytest.fixture
def sales_tools(store, events, sales_persona, clock):
    contact = store.get_or_create_contact(sales_persona.id, "573009998877")
    context = ToolContext(store=store, events=events, persona=sales_persona, contact=contact, clock=clock)
    return SalesAgent().tool_implementations(context)


# ── Registry ─────────────────────────────────────────────────────────


class TestRegistry:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("scheduler", AgentType.SCHEDULER),
            ("sales", AgentType.SALES),
            (" Sales ", AgentType.SALES),
            ("florist", DEFAULT_AGENT_TYPE),
            ("", DEFAULT_AGENT_TYPE),
            (None, DEFAULT_AGENT_TYPE),
        ],
    )
    def test_resolve_agent_type(self, value, expected):
        assert resolve_agent_type(value) == expected

    def test_select_strategy_returns_instances(self):
        assert isinstance(select_strategy("sales"), SalesAgent)
        assert isinstance(select_strategy("unknown"), SchedulerAgent)


# ── Tool schemas ─────────────────────────────────────────────────────


class TestToolSchemas:
    def test_scheduler_tool_names(self):
        assert [t["name"] for t in SCHEDULER_TOOLS] == [
            "checkAvailability",
            "bookAppointment",
            "updateContactName",
            "cancelAppointment",
            "rescheduleAppointment",
        ]

    def test_sales_tool_names(self):
        assert [t["name"] for t in SALES_TOOLS] == [
            "searchProducts",
            "updateContactName",
            "createOrder",
            "updateOrderPaymentMethod",
            "registerPaymentProof",
            "cancelOrder",
            "getOrderStatus",
        ]

    @pytest.mark.parametrize("tools", [SCHEDULER_TOOLS, SALES_TOOLS])
    def test_every_schema_has_a_function(self, tools, scheduler_tools, sales_tools):
        implemented = scheduler_tools if tools is SCHEDULER_TOOLS else sales_tools
        assert {t["name"] for t in tools} == set(implemented)


# ── Scheduler tools ──────────────────────────────────────────────────


class TestSchedulerTools:
    def test_check_availability(self, scheduler_tools):
        data = json.loads(scheduler_tools["checkAvailability"](dateTime="2024-06-10T09:00:00"))
        assert data["available"] is True
        assert data["futureSlots"][0] == "09:00 AM"

    def test_check_availability_failure_is_reported(self, scheduler_tools):
        data = json.loads(scheduler_tools["checkAvailability"](dateTime="not a date"))
        assert data == {"available": False, "message": "Failed to check availability."}

    def test_book_then_cancel(self, scheduler_tools, store, persona, contact):
        booked = json.loads(scheduler_tools["bookAppointment"](dateTime="2024-06-10T11:00:00", serviceName="Haircut"))
        assert booked["success"] is True

        cancelled = json.loads(scheduler_tools["cancelAppointment"](reason="viaje"))
        assert cancelled["success"] is True
        assert store.get_contact(persona.id, contact.phone_number).current_appointment_id is None

    def test_update_contact_name(self, scheduler_tools, store, persona, contact):
        result = json.loads(scheduler_tools["updateContactName"](name="  Ana  "))
        assert result["success"] is True
        assert store.get_contact(persona.id, contact.phone_number).name == "Ana"

    def test_empty_name_is_rejected(self, scheduler_tools):
        assert json.loads(scheduler_tools["updateContactName"](name=" "))["success"] is False


# ── Sales tools ──────────────────────────────────────────────────────


class TestSalesTools:
    def test_full_order_flow(self, sales_tools):
        created = json.loads(sales_tools["createOrder"](items=[{"productIdentifier": "PROD_002", "quantity": 2}]))
        assert created["success"] is True
        assert "$16,000" in created["message"]

        paid = json.loads(sales_tools["updateOrderPaymentMethod"](paymentMethod="transfer"))
        assert paid["success"] is True

        proof = json.loads(sales_tools["registerPaymentProof"]())
        assert proof["success"] is True
        assert "PENDING_VERIFICATION" in sales_tools["getOrderStatus"]()

    def test_cancel_without_order(self, sales_tools):
        assert json.loads(sales_tools["cancelOrder"]())["success"] is False

    def test_search_products(self, sales_tools):
        assert "Panela orgánica" in sales_tools["searchProducts"](keyword="panela")


# ── Shared helpers ───────────────────────────────────────────────────


class TestUpdateContactName:
    def test_store_failure_is_reported(self, store, events, persona, contact):
        context = ToolContext(store=store, events=events, persona=persona, contact=contact)
        with patch.object(store, "save_contact", side_effect=RuntimeError("disk full")):
            result = json.loads(update_contact_name(context, "Ana"))
        assert result == {"success": False, "message": "Failed to save the name."}


# ── Prompts ──────────────────────────────────────────────────────────


class TestPrompts:
    def test_scheduler_prompt_contents(self, persona, contact, now):
        prompt = SchedulerAgent().system_prompt(persona, contact, now)
        assert "**Sofi**" in prompt
        assert "Laura's business" in prompt
        assert "- Haircut ($35,000), 30 mins" in prompt
        assert "- Sunday: Closed" in prompt
        assert "Monday 10 June 2024, 07:00 AM" in prompt
        assert "2024-06-10T15:00:00" in prompt
        assert "do not know their name yet" in prompt

    def test_known_name(self, persona, contact, now):
        contact.name = "Ana"
        prompt = SchedulerAgent().system_prompt(persona, contact, now)
        assert "You are talking to **Ana**" in prompt

    def test_examples_are_included(self, persona, contact, now):
        persona.response_examples = [
            ResponseExample(intent="greeting", user_message="Hola", ideal_response="¡Hola, bella!"),
        ]
        prompt = SchedulerAgent().system_prompt(persona, contact, now)
        assert "User: Hola\nYou: ¡Hola, bella!" in prompt

    def test_sales_prompt(self, sales_persona, now):
        from ecoai.models import Contact

        contact = Contact(owner_id=sales_persona.id, phone_number="573009998877", name="Cliente")
        prompt = SalesAgent().system_prompt(sales_persona, contact, now)
        assert "**Max**" in prompt
        assert "ONE active order" in prompt
        assert "do not know their name yet" in prompt

    def test_format_hours_uses_bookable_days(self, persona):
        persona.business.hours["saturday"] = DayHours(is_open=False)
        lines = format_hours(persona).splitlines()
        assert lines[0] == "- Monday: 09:00 - 18:00"
        assert lines[5] == "- Saturday: Closed"

    def test_format_services_without_services(self, persona):
        persona.business.services = []
        assert format_services(persona) == "No specific services listed."

    def test_structured_context_note(self):
        note = format_structured_context({"catalogId": "CAT-1"})
        assert note.startswith("[SYSTEM NOTE - HIGH PRIORITY]")
        assert '"catalogId": "CAT-1"' in note
