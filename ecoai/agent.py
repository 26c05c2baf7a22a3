"""LangGraph conversation orchestrator shared by every persona.

Architecture:
  One turn (one inbound user message) runs a small LangGraph StateGraph:

    1. **chatbot**: one completion call with the persona's tool schemas
                     bound (``tool_choice="auto"``); adds the response, its
                     token usage and one iteration to the state
    2. **tools**:   executes the tool calls of the last response, in order,
                     against the strategy's function map

  Routing:
    chatbot → (tool calls and iterations < ceiling?) → tools → chatbot (loop)
            → (no tool calls, or ceiling reached)    → END

  The strategy (scheduler, sales, …) is picked per persona, so the graph is
  compiled per turn around that persona's prompt, schemas and functions.
  History is not kept in a checkpointer: the last ``HISTORY_LIMIT`` turns
  are read from the store, and the new user and assistant turns are written
  back to it.

  Mid-conversation system content (stored system turns, structured context
  such as a WhatsApp cart) is sent as a user-role message tagged
  ``[SYSTEM NOTE]``, because the completion API only accepts a leading
  system message.
"""

from __future__ import annotations

import json
import logging
import operator
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from ecoai.agents.base import ToolContext, ToolFunction
from ecoai.agents.registry import select_strategy
from ecoai.config import (
    ANTHROPIC_API_KEY,
    HISTORY_LIMIT,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    MAX_TOOL_ITERATIONS,
    MODEL_NAME,
)
from ecoai.models import ConversationTurn, TurnRole, Usage, utcnow
from ecoai.prompts import format_structured_context
from ecoai.services.events import NEW_MESSAGE, EventPublisher
from ecoai.services.metrics import metrics
from ecoai.services.store import Store

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I'm having trouble processing your request right now."
UNKNOWN_TOOL_RESULT = "Error: that tool does not exist. Only use the tools you were given."
SYSTEM_NOTE_PREFIX = "[SYSTEM NOTE]"


class PersonaNotFoundError(LookupError):
    """The owner id does not match any persona; the turn cannot run."""


@dataclass
class AgentReply:
    text: str
    usage: Usage = field(default_factory=Usage)
    failed: bool = False


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict):
    """State flowing through one turn.

    ``usage`` and ``iterations`` are summed by their reducers, so each
    chatbot step only reports its own share.  ``reply`` holds the last
    non-empty text the model produced.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    usage: Annotated[Usage, operator.add]
    iterations: Annotated[int, operator.add]
    reply: str


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm() -> ChatAnthropic:
    """Build the chat model; tools are bound per turn."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=LLM_TEMPERATURE,
        max_tokens=LLM_MAX_TOKENS,
    )


# ── Message helpers ──────────────────────────────────────────────────


def extract_text(message: AnyMessage) -> str:
    """Plain text of a message whose content is a string or a block list."""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


def system_note(text: str) -> HumanMessage:
    return HumanMessage(content=f"{SYSTEM_NOTE_PREFIX} {text}")


def history_to_messages(turns: list[ConversationTurn]) -> list[AnyMessage]:
    """Map stored turns onto chat messages (owner replies count as assistant)."""
    messages: list[AnyMessage] = []
    for turn in turns:
        if turn.role == "user":
            messages.append(HumanMessage(content=turn.content))
        elif turn.role in ("assistant", "owner"):
            messages.append(AIMessage(content=turn.content))
        else:
            messages.append(system_note(turn.content))
    return messages


def record_turn(
    store: Store,
    events: EventPublisher,
    owner_id: str,
    phone_number: str,
    role: TurnRole,
    content: str,
    *,
    usage: Usage | None = None,
    timestamp: datetime | None = None,
) -> ConversationTurn:
    """Persist a conversation turn and announce it with ``NEW_MESSAGE``."""
    turn = ConversationTurn(
        owner_id=owner_id, phone_number=phone_number, role=role, content=content,
        timestamp=timestamp or utcnow(), tokens=usage or Usage(),
    )
    store.add_turn(turn)
    events.publish(owner_id, NEW_MESSAGE, turn.model_dump(mode="json"))
    return turn


# ── Tool execution ───────────────────────────────────────────────────


def execute_tool(functions: Mapping[str, ToolFunction], name: str, args: dict[str, Any] | None) -> str:
    """Run one tool call and return its result string.

    Unknown names get ``UNKNOWN_TOOL_RESULT``; an exception escaping a tool
    becomes an error string for the model instead of ending the turn.
    """
    fn = functions.get(name)
    if fn is None:
        logger.warning("Model requested unknown tool %r", name)
        metrics.record_failure("tool", name, error_type="UnknownTool")
        return UNKNOWN_TOOL_RESULT

    try:
        with metrics.timed("tool", name):
            result = fn(**(args or {}))
    except Exception as exc:
        logger.exception("Tool %s raised with args %r", name, args)
        return f"Error: {name} failed ({type(exc).__name__}). Apologise and offer to try again."

    logger.debug("Tool %s returned %d chars", name, len(str(result)))
    return result if isinstance(result, str) else json.dumps(result, default=str)


# ── Nodes ────────────────────────────────────────────────────────────


def _make_chatbot_node(llm_with_tools):
    """Create the chatbot node around an LLM that already has tools bound."""

    def chatbot_node(state: TurnState) -> dict:
        t0 = time.perf_counter()
        with metrics.timed("anthropic", "llm_invoke"):
            response = llm_with_tools.invoke(state["messages"])
        elapsed = (time.perf_counter() - t0) * 1000

        usage = Usage.from_metadata(getattr(response, "usage_metadata", None))
        update: dict[str, Any] = {"messages": [response], "usage": usage, "iterations": 1}
        text = extract_text(response)
        if text:
            update["reply"] = text
        logger.debug(
            "chatbot responded in %.0fms (%d tool calls, %d tokens)",
            elapsed, len(getattr(response, "tool_calls", None) or []), usage.total_tokens,
        )
        return update

    return chatbot_node


def _make_tools_node(functions: Mapping[str, ToolFunction]):
    def tools_node(state: TurnState) -> dict:
        last_message = state["messages"][-1]
        results = [
            ToolMessage(
                content=execute_tool(functions, call["name"], call.get("args")),
                tool_call_id=call["id"],
                name=call["name"],
            )
            for call in last_message.tool_calls
        ]
        return {"messages": results}

    return tools_node


def _make_router(max_iterations: int):
    def should_use_tools(state: TurnState) -> str:
        """Route to tools while the model asks for them and the ceiling allows it."""
        last_message = state["messages"][-1]
        if not getattr(last_message, "tool_calls", None):
            return END
        if state.get("iterations", 0) >= max_iterations:
            logger.warning(
                "Tool iteration ceiling (%d) reached; dropping %d pending tool calls",
                max_iterations, len(last_message.tool_calls),
            )
            return END
        return "tools"

    return should_use_tools


# ── Graph assembly ───────────────────────────────────────────────────


def build_turn_graph(llm_with_tools, functions: Mapping[str, ToolFunction], max_iterations: int):
    """Compile the chatbot/tools graph for one turn."""
    graph = StateGraph(TurnState)
    graph.add_node("chatbot", _make_chatbot_node(llm_with_tools))
    graph.add_node("tools", _make_tools_node(functions))
    graph.set_entry_point("chatbot")
    graph.add_conditional_edges(
        "chatbot", _make_router(max_iterations), {"tools": "tools", END: END},
    )
    graph.add_edge("tools", "chatbot")
    return graph.compile()


# ── Orchestrator ─────────────────────────────────────────────────────


class Orchestrator:
    """Runs one conversation turn for any persona."""

    def __init__(
        self,
        store: Store,
        events: EventPublisher,
        llm=None,
        *,
        history_limit: int = HISTORY_LIMIT,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._events = events
        self._llm = llm if llm is not None else _build_llm()
        self._history_limit = history_limit
        self._max_iterations = max_iterations
        self._clock = clock

    def _record_turn(self, owner_id: str, phone_number: str, role: TurnRole, content: str, usage: Usage) -> None:
        record_turn(
            self._store, self._events, owner_id, phone_number, role, content,
            usage=usage, timestamp=self._clock(),
        )

    def respond(
        self,
        phone_number: str,
        message_text: str,
        owner_id: str,
        structured_context: dict[str, Any] | None = None,
    ) -> AgentReply:
        """Produce the reply to one inbound message.

        Raises ``PersonaNotFoundError`` when *owner_id* is unknown.  Every
        other failure of the completion service yields ``FALLBACK_REPLY``.
        """
        persona = self._store.get_persona(owner_id)
        if persona is None:
            raise PersonaNotFoundError(f"No persona for owner {owner_id}")

        contact = self._store.get_or_create_contact(owner_id, phone_number)
        history = self._store.recent_turns(owner_id, phone_number, self._history_limit)
        strategy = select_strategy(persona.agent_type)
        now = self._clock()

        self._record_turn(owner_id, phone_number, "user", message_text, Usage())

        messages: list[AnyMessage] = [SystemMessage(content=strategy.system_prompt(persona, contact, now))]
        messages.extend(history_to_messages(history))
        if structured_context:
            messages.append(HumanMessage(content=format_structured_context(structured_context)))
        messages.append(HumanMessage(content=message_text))

        context = ToolContext(
            store=self._store, events=self._events, persona=persona, contact=contact, clock=self._clock,
        )
        llm_with_tools = self._llm.bind_tools(strategy.tool_schemas(), tool_choice="auto")
        graph = build_turn_graph(llm_with_tools, strategy.tool_implementations(context), self._max_iterations)

        logger.info(
            "Turn for %s (owner %s, %s, %d history turns)",
            phone_number, owner_id, strategy.agent_type.value, len(history),
        )
        try:
            final = graph.invoke(
                {"messages": messages, "usage": Usage(), "iterations": 0, "reply": ""},
                config={"recursion_limit": self._max_iterations * 2 + 5},
            )
            reply = AgentReply(text=final.get("reply", ""), usage=final.get("usage") or Usage())
        except Exception:
            logger.exception("Conversation turn failed for %s (owner %s)", phone_number, owner_id)
            reply = AgentReply(text=FALLBACK_REPLY, usage=Usage(), failed=True)

        self._record_turn(owner_id, phone_number, "assistant", reply.text, reply.usage)
        if reply.usage.total_tokens:
            self._store.increment_usage(owner_id, reply.usage)
            metrics.record_token_usage(owner_id, reply.usage)
        return reply
