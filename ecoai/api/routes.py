"""FastAPI route definitions: WhatsApp webhook, direct chat, orders and human takeover."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from ecoai.agent import PersonaNotFoundError
from ecoai.api.schemas import (
    BotToggle,
    ChatRequest,
    ChatResponse,
    ContactBotResponse,
    HealthResponse,
    OrderItemOut,
    OrderStatusResponse,
    OrderStatusUpdate,
    OrderSummary,
    OwnerMessageRequest,
    OwnerMessageResponse,
)
from ecoai.config import VERIFY_TOKEN
from ecoai.models import OrderStatus, Persona
from ecoai.services.orders import OrderManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_state(request: Request, name: str):
    """Retrieve a shared component created by the lifespan (see ``server.py``)."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return value


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: str = Query("", alias="hub.mode"),
    token: str = Query("", alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
):
    """Meta webhook verification handshake."""
    if mode == "subscribe" and VERIFY_TOKEN and token == VERIFY_TOKEN:
        logger.info("Webhook verified")
        return challenge
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook")
async def receive_webhook(http_request: Request):
    """Process inbound WhatsApp messages.

    Always acknowledges with 200 once the body is parsed, so Meta does not
    redeliver; failures are logged.  The turn runs in a worker thread
    because it blocks on the completion service.
    """
    handler = _get_state(http_request, "handler")
    send = _get_state(http_request, "send")
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        payload = await http_request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON body.") from e

    try:
        outcomes = await asyncio.to_thread(handler.process_webhook, payload, send)
        logger.info("[%s] Webhook processed: %s", request_id, [o.value for o in outcomes])
    except PersonaNotFoundError:
        logger.error("[%s] Webhook for a tenant without persona", request_id)
    except Exception:
        logger.exception("[%s] Error processing webhook", request_id)
    return {"status": "EVENT_RECEIVED"}


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to a persona and return what it replied."""
    handler = _get_state(http_request, "handler")
    request_id = getattr(http_request.state, "request_id", "?")
    replies: list[str] = []

    def collect(to: str, text: str, persona: Persona) -> None:
        replies.append(text)

    try:
        outcome = await asyncio.to_thread(
            handler.process_direct_message,
            request.phone_number,
            request.message,
            request.owner_id,
            collect,
            request.context,
        )
        return ChatResponse(replies=replies, outcome=outcome.value)

    except PersonaNotFoundError as e:
        raise HTTPException(status_code=404, detail="Unknown persona.") from e
    except Exception as e:
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e


@router.patch("/orders/{order_id}/status", response_model=OrderStatusResponse)
async def update_order_status(order_id: str, update: OrderStatusUpdate, http_request: Request):
    """Owner-side order transition; the customer is messaged about it."""
    store = _get_state(http_request, "store")
    events = _get_state(http_request, "events")
    send = _get_state(http_request, "send")

    try:
        order, notification = OrderManager(store, events).update_status(order_id, update.status)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except LookupError as e:
        raise HTTPException(status_code=404, detail="Order not found.") from e

    notified = False
    if notification:
        persona = store.get_persona(order.owner_id)
        contact = store.get_contact_by_id(order.contact_id)
        if persona is not None and contact is not None:
            try:
                await asyncio.to_thread(send, contact.phone_number, notification, persona)
                notified = True
            except Exception:
                logger.exception("Could not notify customer about order %s", order.id)

    return OrderStatusResponse(order_id=order.id, status=order.status.value, notified=notified)


@router.get("/orders", response_model=list[OrderSummary])
async def list_orders(
    http_request: Request,
    owner_id: str = Query(..., min_length=1),
    status: str | None = Query(None),
):
    """An owner's orders, newest first, with the customer's name and phone."""
    store = _get_state(http_request, "store")
    try:
        wanted = OrderStatus(status) if status else None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Unknown order status: {status}") from e

    summaries = []
    for order in store.list_orders(owner_id, wanted):
        contact = store.get_contact_by_id(order.contact_id)
        summaries.append(OrderSummary(
            order_id=order.id,
            short_id=order.short_id,
            status=order.status.value,
            total_amount=order.total_amount,
            currency=order.currency,
            payment_method=order.payment_method,
            delivery_address=order.delivery_address,
            created_at=order.created_at,
            contact_name=contact.name if contact else None,
            contact_phone=contact.phone_number if contact else None,
            items=[OrderItemOut.model_validate(item, from_attributes=True) for item in order.items],
        ))
    return summaries


# ── Human takeover ───────────────────────────────────────────────────


@router.post("/owner/messages", response_model=OwnerMessageResponse)
async def send_owner_message(request: OwnerMessageRequest, http_request: Request):
    """Deliver a message the owner wrote and add it to the conversation."""
    handler = _get_state(http_request, "handler")
    send = _get_state(http_request, "send")
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        turn = await asyncio.to_thread(
            handler.send_owner_message, request.owner_id, request.phone_number, request.message, send,
        )
    except PersonaNotFoundError as e:
        raise HTTPException(status_code=404, detail="Unknown persona.") from e
    except Exception as e:
        logger.exception("[%s] Could not deliver owner message", request_id)
        raise HTTPException(status_code=502, detail="The message could not be delivered.") from e
    return OwnerMessageResponse(timestamp=turn.timestamp)


@router.patch("/contacts/{phone_number}/bot", response_model=ContactBotResponse)
async def toggle_bot(phone_number: str, toggle: BotToggle, http_request: Request):
    """Turn the assistant on or off for one contact."""
    handler = _get_state(http_request, "handler")
    try:
        contact = handler.set_bot_active(toggle.owner_id, phone_number, toggle.active)
    except PersonaNotFoundError as e:
        raise HTTPException(status_code=404, detail="Unknown persona.") from e
    return ContactBotResponse(phone_number=contact.phone_number, is_bot_active=contact.is_bot_active)
