"""EcoAI: multi-tenant WhatsApp assistants for small businesses.

Architecture Overview
=====================

Every business owner is a **persona** with its own bot identity, business
rules and capability set.  One inbound customer message is one
conversation **turn**:

1. An entry point (WhatsApp webhook, ``/api/chat`` or the CLI) applies the
   channel rules and calls the orchestrator.
2. The **orchestrator** loads the persona, the contact and the last few
   turns, picks the persona's **agent strategy** and runs a LangGraph
   chatbot/tools loop against Claude, bounded by an iteration ceiling.
3. Tool calls land in the domain engines: the **availability engine** and
   **booking manager** for scheduler personas, the **order manager** for
   sales personas.  Every tool returns one string to the model.
4. The reply goes back through the entry point's reply callback; turns,
   token usage and notification events are recorded on the way.

Key Design Decisions
--------------------
- **Strategies**: a closed ``AgentType`` enum mapped through a registry;
  unknown values fall back to the scheduler.
- **Time**: availability is computed on persona-local wall-clock time with
  buffered busy blocks ``[start, end + buffer)``.
- **Resilience**: completion failures become a fixed apology; tool failures
  become strings the model can relay; Graph API calls retry with backoff.
- **Dual Interface**: FastAPI server (production) + CLI chat loop
  (development/testing).

Package Structure
-----------------
- ``ecoai/agent.py``: orchestrator and LangGraph turn graph
- ``ecoai/handlers.py``: webhook and direct-message entry points
- ``ecoai/agents/``: strategy interface, scheduler, sales, registry
- ``ecoai/services/``: availability, booking, orders, store, events,
  metrics, WhatsApp client
- ``ecoai/jobs/``: appointment reminders
- ``ecoai/prompts.py``: system prompts
- ``ecoai/models.py``: pydantic domain models
- ``ecoai/config.py``: configuration from environment / SSM
- ``ecoai/server.py``, ``ecoai/api/``: FastAPI application
- ``ecoai/main.py``: CLI chat interface
"""
