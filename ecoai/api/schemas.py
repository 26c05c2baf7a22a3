"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """A message sent straight to a persona (dashboard tester, integrations)."""

    owner_id: str = Field(..., min_length=1, max_length=100, description="Persona (tenant) id")
    phone_number: str = Field(..., min_length=3, max_length=32, description="Customer phone number")
    message: str = Field(..., min_length=1, max_length=4000, description="The customer's message")
    context: dict[str, Any] | None = Field(
        default=None, description="Optional structured data, e.g. a cart payload",
    )


class ChatResponse(BaseModel):
    replies: list[str] = Field(default_factory=list, description="Messages the persona sent back")
    outcome: str = Field(..., description="How the message was handled")


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)


class OrderStatusResponse(BaseModel):
    order_id: str
    status: str
    notified: bool = Field(..., description="Whether the customer was messaged about the change")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "ecoai"


class OrderItemOut(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: float


class OrderSummary(BaseModel):
    """An order as listed on the owner's dashboard."""

    order_id: str
    short_id: str
    status: str
    total_amount: float
    currency: str
    payment_method: str
    delivery_address: str
    created_at: datetime
    contact_name: str | None = None
    contact_phone: str | None = None
    items: list[OrderItemOut] = Field(default_factory=list)


class OwnerMessageRequest(BaseModel):
    """A message the owner writes to a customer by hand."""

    owner_id: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=3, max_length=32)
    message: str = Field(..., min_length=1, max_length=4000)


class OwnerMessageResponse(BaseModel):
    status: str = "sent"
    timestamp: datetime


class BotToggle(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=100)
    active: bool


class ContactBotResponse(BaseModel):
    phone_number: str
    is_bot_active: bool
