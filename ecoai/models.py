"""Domain models shared by the orchestrator, the engines and the store.

All models are pydantic v2 ``BaseModel`` subclasses.  Persona defaults
(appointment duration, buffer, timezone, business hours, limits) are
resolved once, when the model is constructed, so the rest of the code never
has to re-derive them.
"""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from ecoai.config import DEFAULT_TIMEZONE

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
UNKNOWN_CONTACT_NAMES = frozenset({"", "unknown", "cliente"})


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


# ── Token usage ──────────────────────────────────────────────────────


class Usage(BaseModel):
    """Token counts for one completion call, a whole turn or a tenant."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def from_metadata(cls, metadata: dict | None) -> Usage:
        """Build from a LangChain ``usage_metadata`` dict (may be missing)."""
        if not metadata:
            return cls()
        prompt = int(metadata.get("input_tokens", 0) or 0)
        completion = int(metadata.get("output_tokens", 0) or 0)
        total = int(metadata.get("total_tokens", 0) or 0) or prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class TenantUsage(Usage):
    last_reset_date: datetime = Field(default_factory=utcnow)


# ── Persona (tenant) ─────────────────────────────────────────────────


class AgentType(str, Enum):
    SCHEDULER = "scheduler"
    SALES = "sales"


class DayHours(BaseModel):
    open: str | None = None
    close: str | None = None
    is_open: bool = True

    @property
    def is_bookable(self) -> bool:
        return self.is_open and bool(self.open) and bool(self.close)


def _default_hours() -> dict[str, DayHours]:
    hours = {day: DayHours(open="09:00", close="18:00") for day in WEEKDAYS}
    hours["sunday"] = DayHours(is_open=False)
    return hours


class ServiceItem(BaseModel):
    name: str
    description: str = ""
    price: float | None = None
    duration: int | None = Field(default=None, gt=0)


class ResponseExample(BaseModel):
    intent: str = ""
    user_message: str
    ideal_response: str


class BusinessContext(BaseModel):
    services: list[ServiceItem] = Field(default_factory=list)
    hours: dict[str, DayHours] = Field(default_factory=_default_hours)
    location: str = ""
    contact_phone: str = ""

    @field_validator("hours")
    @classmethod
    def _normalise_day_names(cls, value: dict[str, DayHours]) -> dict[str, DayHours]:
        return {day.lower(): hours for day, hours in value.items()}

    def hours_for(self, weekday: str) -> DayHours | None:
        return self.hours.get(weekday.lower())

    def find_service(self, name: str) -> ServiceItem | None:
        """Exact, case-insensitive lookup by service name."""
        wanted = name.strip().lower()
        return next((s for s in self.services if s.name.strip().lower() == wanted), None)


class AppointmentSettings(BaseModel):
    default_duration: int = Field(default=30, gt=0)
    buffer_time: int = Field(default=5, ge=0)
    timezone: str = DEFAULT_TIMEZONE

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class ReminderSettings(BaseModel):
    is_enabled: bool = True
    hours_before: int = Field(default=24, gt=0, le=168)


class Subscription(BaseModel):
    plan: Literal["basic", "pro"] = "basic"
    token_limit: int = 100_000
    is_active: bool = True


class WhatsAppConfig(BaseModel):
    token: str = ""
    phone_number_id: str = ""


class Persona(BaseModel):
    """A tenant: one business owner with its bot identity and rules."""

    id: str = Field(default_factory=new_id)
    first_name: str = ""
    last_name: str = ""
    bot_name: str = "Assistant"
    tone_description: str = "friendly and professional"
    keywords: list[str] = Field(default_factory=list)
    fillers: list[str] = Field(default_factory=list)
    response_examples: list[ResponseExample] = Field(default_factory=list)
    # Free string on purpose: unknown values are resolved by the agent registry
    agent_type: str = AgentType.SCHEDULER.value
    business: BusinessContext = Field(default_factory=BusinessContext)
    appointment_settings: AppointmentSettings = Field(default_factory=AppointmentSettings)
    reminder_settings: ReminderSettings = Field(default_factory=ReminderSettings)
    usage: TenantUsage = Field(default_factory=TenantUsage)
    subscription: Subscription = Field(default_factory=Subscription)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)

    @property
    def owner_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_exceeded_token_limit(self) -> bool:
        return self.usage.total_tokens >= self.subscription.token_limit


# ── Contacts & conversation ──────────────────────────────────────────


class Contact(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    phone_number: str
    name: str = "Unknown"
    is_bot_active: bool = True
    current_appointment_id: str | None = None
    last_interaction: datetime = Field(default_factory=utcnow)

    @property
    def has_known_name(self) -> bool:
        return self.name.strip().lower() not in UNKNOWN_CONTACT_NAMES


TurnRole = Literal["user", "assistant", "owner", "system"]


class ConversationTurn(BaseModel):
    owner_id: str
    phone_number: str
    role: TurnRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: Usage = Field(default_factory=Usage)


# ── Appointments ─────────────────────────────────────────────────────


class AppointmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Appointment(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    contact_id: str
    customer_phone: str
    date_time: datetime
    end_time: datetime
    service: str
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    notes: str = ""
    reminder_sent: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_interval(self) -> Appointment:
        if self.date_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("appointment times must be timezone-aware")
        if self.end_time <= self.date_time:
            raise ValueError("end_time must be after date_time")
        return self


# ── Catalog & orders ─────────────────────────────────────────────────


class Product(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    retailer_id: str
    name: str
    description: str = ""
    price: float = Field(ge=0)
    currency: str = "COP"
    availability: Literal["in stock", "out of stock"] = "in stock"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
MUTABLE_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PENDING_VERIFICATION})


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(default=1, ge=1)
    price: float = Field(default=0, ge=0)
    currency: str = "COP"

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    contact_id: str
    items: list[OrderItem]
    total_amount: float
    currency: str = "COP"
    status: OrderStatus = OrderStatus.PENDING
    delivery_address: str = "not_specified"
    payment_method: str = "not_specified"
    payment_proof_url: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_total(self) -> Order:
        expected = sum(item.subtotal for item in self.items)
        if not math.isclose(self.total_amount, expected, abs_tol=0.01):
            raise ValueError(f"total_amount {self.total_amount} != sum of items {expected}")
        return self

    @property
    def short_id(self) -> str:
        return self.id[-6:]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES
