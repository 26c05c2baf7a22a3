"""Tests for the conversation orchestrator.

Covers:
  - Plain replies, token accounting and turn persistence
  - The tool loop (ordering, unknown tools, failures, iteration ceiling)
  - Prompt assembly (history window, structured context)
  - Strategy selection per persona
  - Graph helpers (router, text extraction, tool execution)
"""

from __future__ import annotations

import itertools
import json
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from ecoai.agent import (
    FALLBACK_REPLY,
    SYSTEM_NOTE_PREFIX,
    UNKNOWN_TOOL_RESULT,
    Orchestrator,
    PersonaNotFoundError,
    TurnState,
    _make_router,
    execute_tool,
    extract_text,
    history_to_messages,
)
from ecoai.agents.sales import SALES_TOOLS
from ecoai.agents.scheduler import SCHEDULER_TOOLS
from ecoai.models import ConversationTurn, Usage
from ecoai.services.events import NEW_MESSAGE

_ids = itertools.count(1)


# ── Helpers ──────────────────────────────────────────────────────────


def _step(text: str = "", calls: list[tuple[str, dict]] | None = None, tokens: int = 0):
    """Describe one model response: text, ``(name, args)`` tool calls and tokens."""
    return text, calls or [], tokens


def _message(text: str, calls: list[tuple[str, dict]], tokens: int) -> AIMessage:
    # Built fresh on every call: add_messages assigns ids in place.
    usage = None
    if tokens:
        usage = {"input_tokens": tokens - tokens // 3, "output_tokens": tokens // 3, "total_tokens": tokens}
    return AIMessage(
        content=text,
        tool_calls=[{"name": name, "args": args, "id": f"call_{next(_ids)}"} for name, args in calls],
        usage_metadata=usage,
    )


def _make_mock_llm(*steps):
    """Mock chat model whose bound copy plays back *steps* in order.

    ``llm.seen`` collects a copy of the message list sent on each call.
    """
    llm = MagicMock()
    bound = MagicMock()
    llm.bind_tools.return_value = bound
    llm.seen = []
    script = iter(steps)

    def invoke(messages):
        llm.seen.append(list(messages))
        return _message(*next(script))

    bound.invoke.side_effect = invoke
    return llm


def _looping_llm(text: str = "Let me check"):
    """Mock chat model that asks for a tool on every call."""
    llm = MagicMock()
    bound = MagicMock()
    llm.bind_tools.return_value = bound
    bound.invoke.side_effect = lambda messages: _message(
        text, [("checkAvailability", {"dateTime": "2024-06-10T09:00:00"})], 10,
    )
    return llm


@pytest.fixture
def make_orchestrator(store, events, clock):
    def _make(llm, **kwargs):
        return Orchestrator(store, events, llm, clock=clock, **kwargs)

    return _make


# ── TestRespond ──────────────────────────────────────────────────────


class TestRespond:
    """Verify a turn without tools end to end."""

    def test_plain_reply(self, make_orchestrator, persona):
        llm = _make_mock_llm(_step("¡Hola! ¿En qué te ayudo?", tokens=30))
        reply = make_orchestrator(llm).respond("573001112233", "Hola", persona.id)

        assert reply.text == "¡Hola! ¿En qué te ayudo?"
        assert reply.failed is False
        assert reply.usage.total_tokens == 30

    def test_turns_are_persisted_in_order(self, make_orchestrator, store, persona):
        llm = _make_mock_llm(_step("Claro", tokens=12))
        make_orchestrator(llm).respond("573001112233", "Quiero una cita", persona.id)

        turns = store.recent_turns(persona.id, "573001112233", 10)
        assert [(t.role, t.content) for t in turns] == [("user", "Quiero una cita"), ("assistant", "Claro")]
        assert turns[1].tokens.total_tokens == 12

    def test_new_messages_are_published(self, make_orchestrator, persona, published):
        llm = _make_mock_llm(_step("Claro"))
        make_orchestrator(llm).respond("573001112233", "Hola", persona.id)

        assert [(tenant, name) for tenant, name, _ in published] == [
            (persona.id, NEW_MESSAGE),
            (persona.id, NEW_MESSAGE),
        ]
        assert [payload["role"] for _, _, payload in published] == ["user", "assistant"]

    def test_usage_is_added_to_tenant(self, make_orchestrator, store, persona):
        llm = _make_mock_llm(_step("Hola", tokens=40))
        make_orchestrator(llm).respond("573001112233", "Hola", persona.id)
        assert store.get_persona(persona.id).usage.total_tokens == 40

    def test_contact_is_created_lazily(self, make_orchestrator, store, persona):
        llm = _make_mock_llm(_step("Hola"))
        make_orchestrator(llm).respond("573005550000", "Hola", persona.id)
        assert store.get_contact(persona.id, "573005550000") is not None

    def test_unknown_owner_raises(self, make_orchestrator, store):
        llm = _make_mock_llm()
        with pytest.raises(PersonaNotFoundError):
            make_orchestrator(llm).respond("573001112233", "Hola", "nobody")
        assert store.recent_turns("nobody", "573001112233", 5) == []

    def test_llm_failure_returns_fallback(self, make_orchestrator, store, persona):
        llm = MagicMock()
        llm.bind_tools.return_value.invoke.side_effect = RuntimeError("API down")

        reply = make_orchestrator(llm).respond("573001112233", "Hola", persona.id)

        assert reply.text == FALLBACK_REPLY
        assert reply.failed is True
        assert reply.usage.total_tokens == 0
        assert store.recent_turns(persona.id, "573001112233", 5)[-1].content == FALLBACK_REPLY
        assert store.get_persona(persona.id).usage.total_tokens == 0


# ── TestToolLoop ─────────────────────────────────────────────────────


class TestToolLoop:
    """Verify tool calls are executed and fed back to the model."""

    def test_tool_result_is_sent_back(self, make_orchestrator, persona):
        llm = _make_mock_llm(
            _step(calls=[("checkAvailability", {"dateTime": "2024-06-10T09:00:00"})], tokens=10),
            _step("Sí, a las 9 está libre.", tokens=20),
        )

        reply = make_orchestrator(llm).respond("573001112233", "¿Tienen a las 9?", persona.id)

        assert reply.text == "Sí, a las 9 está libre."
        assert reply.usage.total_tokens == 30
        tool_message = llm.seen[1][-1]
        assert isinstance(tool_message, ToolMessage)
        assert json.loads(tool_message.content)["message"] == "Slot available"

    def test_calls_run_in_order_within_one_response(self, make_orchestrator, store, persona):
        llm = _make_mock_llm(
            _step(calls=[
                ("updateContactName", {"name": "Ana"}),
                ("bookAppointment", {"dateTime": "2024-06-10T09:00:00", "serviceName": "Haircut"}),
            ]),
            _step("Listo Ana, quedó agendada."),
        )

        make_orchestrator(llm).respond("573001112233", "Soy Ana, agéndame", persona.id)

        contact = store.get_contact(persona.id, "573001112233")
        assert contact.name == "Ana"
        assert contact.current_appointment_id is not None
        tool_messages = [m for m in llm.seen[1] if isinstance(m, ToolMessage)]
        assert [m.name for m in tool_messages] == ["updateContactName", "bookAppointment"]

    def test_unknown_tool_gets_error_result(self, make_orchestrator, persona):
        llm = _make_mock_llm(
            _step(calls=[("deleteEverything", {})]),
            _step("Perdón, no puedo hacer eso."),
        )

        reply = make_orchestrator(llm).respond("573001112233", "borra todo", persona.id)

        assert reply.text == "Perdón, no puedo hacer eso."
        assert llm.seen[1][-1].content == UNKNOWN_TOOL_RESULT

    def test_iteration_ceiling_ends_turn(self, make_orchestrator, persona):
        llm = _looping_llm()

        reply = make_orchestrator(llm, max_iterations=2).respond("573001112233", "Hola", persona.id)

        assert llm.bind_tools.return_value.invoke.call_count == 2
        assert reply.text == "Let me check"
        assert reply.failed is False
        assert reply.usage.total_tokens == 20

    def test_empty_final_text_is_returned_empty(self, make_orchestrator, persona):
        llm = _make_mock_llm(_step(""))
        assert make_orchestrator(llm).respond("573001112233", "ok", persona.id).text == ""


# ── TestPromptAssembly ───────────────────────────────────────────────


class TestPromptAssembly:
    """Verify what the model receives on the first call of a turn."""

    def test_message_layout(self, make_orchestrator, store, persona, now):
        for role, content in (("user", "Hola"), ("assistant", "¡Hola! Soy Sofi")):
            store.add_turn(ConversationTurn(
                owner_id=persona.id, phone_number="573001112233", role=role, content=content, timestamp=now,
            ))
        llm = _make_mock_llm(_step("Claro"))

        make_orchestrator(llm).respond("573001112233", "¿Precios?", persona.id)

        first = llm.seen[0]
        assert isinstance(first[0], SystemMessage)
        assert "Sofi" in first[0].content
        assert [type(m) for m in first[1:]] == [HumanMessage, AIMessage, HumanMessage]
        assert first[-1].content == "¿Precios?"

    def test_history_is_windowed(self, make_orchestrator, store, persona, now):
        for i in range(8):
            store.add_turn(ConversationTurn(
                owner_id=persona.id, phone_number="573001112233", role="user", content=f"m{i}", timestamp=now,
            ))
        llm = _make_mock_llm(_step("ok"))

        make_orchestrator(llm, history_limit=3).respond("573001112233", "new", persona.id)

        assert [m.content for m in llm.seen[0][1:]] == ["m5", "m6", "m7", "new"]

    def test_structured_context_precedes_user_message(self, make_orchestrator, persona):
        llm = _make_mock_llm(_step("Recibí tu carrito"))
        cart = {"cart": [{"productIdentifier": "PROD_001", "quantity": 2}]}

        make_orchestrator(llm).respond("573001112233", "Quiero esto", persona.id, structured_context=cart)

        note = llm.seen[0][-2]
        assert note.content.startswith("[SYSTEM NOTE - HIGH PRIORITY]")
        assert "PROD_001" in note.content
        assert llm.seen[0][-1].content == "Quiero esto"

    def test_unknown_name_prompts_for_name(self, make_orchestrator, persona):
        llm = _make_mock_llm(_step("Hola"))
        make_orchestrator(llm).respond("573001112233", "Hola", persona.id)
        assert "do not know their name yet" in llm.seen[0][0].content


# ── TestStrategySelection ────────────────────────────────────────────


class TestStrategySelection:
    def test_scheduler_tools_are_bound(self, make_orchestrator, persona):
        llm = _make_mock_llm(_step("Hola"))
        make_orchestrator(llm).respond("573001112233", "Hola", persona.id)
        llm.bind_tools.assert_called_once_with(SCHEDULER_TOOLS, tool_choice="auto")

    def test_sales_persona_uses_sales_tools(self, make_orchestrator, sales_persona):
        llm = _make_mock_llm(
            _step(calls=[("searchProducts", {"keyword": "panela"})]),
            _step("Tenemos panela orgánica a $8,000."),
        )

        make_orchestrator(llm).respond("573009998877", "¿Tienen panela?", sales_persona.id)

        llm.bind_tools.assert_called_once_with(SALES_TOOLS, tool_choice="auto")
        assert "Panela orgánica" in llm.seen[1][-1].content

    def test_unknown_agent_type_falls_back_to_scheduler(self, make_orchestrator, store, persona):
        persona.agent_type = "florist"
        store.save_persona(persona)
        llm = _make_mock_llm(_step("Hola"))

        make_orchestrator(llm).respond("573001112233", "Hola", persona.id)

        llm.bind_tools.assert_called_once_with(SCHEDULER_TOOLS, tool_choice="auto")


# ── TestHelpers ──────────────────────────────────────────────────────


class TestHelpers:
    def test_router_routes_tool_calls(self):
        router = _make_router(max_iterations=3)
        msg = AIMessage(content="", tool_calls=[{"name": "checkAvailability", "args": {}, "id": "1"}])
        state: TurnState = {"messages": [msg], "usage": Usage(), "iterations": 1, "reply": ""}
        assert router(state) == "tools"

    def test_router_ends_at_ceiling(self):
        router = _make_router(max_iterations=3)
        msg = AIMessage(content="", tool_calls=[{"name": "checkAvailability", "args": {}, "id": "1"}])
        state: TurnState = {"messages": [msg], "usage": Usage(), "iterations": 3, "reply": ""}
        assert router(state) == "__end__"

    def test_router_ends_without_tool_calls(self):
        router = _make_router(max_iterations=3)
        state: TurnState = {"messages": [AIMessage(content="Done")], "usage": Usage(), "iterations": 1, "reply": ""}
        assert router(state) == "__end__"

    def test_extract_text_from_blocks(self):
        msg = AIMessage(content=[
            {"type": "text", "text": "Hola "},
            {"type": "tool_use", "id": "x", "name": "checkAvailability", "input": {}},
            {"type": "text", "text": "Ana"},
        ])
        assert extract_text(msg) == "Hola Ana"

    def test_execute_tool_turns_exceptions_into_text(self):
        def broken(**kwargs):
            raise KeyError("boom")

        result = execute_tool({"broken": broken}, "broken", {})
        assert result.startswith("Error: broken failed (KeyError)")

    def test_execute_tool_serialises_non_strings(self):
        assert json.loads(execute_tool({"f": lambda: {"a": 1}}, "f", None)) == {"a": 1}

    def test_history_roles(self, now):
        turns = [
            ConversationTurn(owner_id="o", phone_number="p", role=role, content=role, timestamp=now)
            for role in ("user", "assistant", "owner", "system")
        ]
        messages = history_to_messages(turns)
        assert [type(m) for m in messages] == [HumanMessage, AIMessage, AIMessage, HumanMessage]
        assert messages[-1].content == f"{SYSTEM_NOTE_PREFIX} system"
