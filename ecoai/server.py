"""FastAPI server for the EcoAI conversation service.

Run with:
    uv run uvicorn ecoai.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from ecoai.agent import Orchestrator
from ecoai.api.routes import router
from ecoai.config import (
    CORS_ORIGINS,
    REMINDER_INTERVAL_SECONDS,
    REMINDERS_ENABLED,
    SEED_FILE,
    SERVER_HOST,
    SERVER_PORT,
)
from ecoai.handlers import MessageHandler
from ecoai.jobs.reminders import start_reminder_thread
from ecoai.services.events import ALL_TENANTS, EventBus
from ecoai.services.store import InMemoryStore
from ecoai.services.whatsapp_client import send_reply

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def _log_event(tenant_id: str, event_name: str, payload: dict) -> None:
    logger.info("Event %s for tenant %s", event_name, tenant_id)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the store, event bus, orchestrator and message handler once."""
    store = InMemoryStore.from_seed_file(SEED_FILE) if SEED_FILE else InMemoryStore()
    events = EventBus()
    events.subscribe(ALL_TENANTS, _log_event)

    application.state.store = store
    application.state.events = events
    application.state.send = send_reply
    application.state.handler = MessageHandler(store, events, Orchestrator(store, events))

    if REMINDERS_ENABLED:
        start_reminder_thread(store, events, send_reply, REMINDER_INTERVAL_SECONDS)
    logger.info("EcoAI ready.")
    yield


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="EcoAI",
    description="Multi-tenant WhatsApp assistants: appointment scheduling and sales.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) to every request and its log lines."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "EcoAI",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "webhook": "/api/webhook",
        "orders": "/api/orders",
    }


if __name__ == "__main__":
    logger.info("Starting EcoAI API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "ecoai.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
