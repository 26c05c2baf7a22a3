"""Order lifecycle for the sales persona: catalog search, order creation,
payment method, payment proof, cancellation and status.

Customer-side operations act on the contact's latest *mutable* order
(``pending`` or ``pending_verification``); status lookups read the latest
non-terminal one.  ``update_status`` is the owner-side transition used by
the HTTP API and returns the text to send to the customer.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from ecoai.models import (
    MUTABLE_ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    Contact,
    Order,
    OrderItem,
    OrderStatus,
    Persona,
    Product,
)
from ecoai.services.events import NEW_ORDER, ORDER_CANCELLED, PAYMENT_PROOF_RECEIVED, EventPublisher
from ecoai.services.store import Store
from ecoai.tools.results import ActionResult

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 5
UNKNOWN_PRODUCT_ID = "UNKNOWN"
DEFAULT_CURRENCY = "COP"
DEFAULT_PROOF_URL = "PENDING_VERIFICATION_VIA_CHAT"
PAYMENT_METHODS = ("transfer", "cash")

NON_TERMINAL_ORDER_STATUSES = frozenset(OrderStatus) - TERMINAL_ORDER_STATUSES

# Owner-side transitions and the message the customer receives for each
_STATUS_NOTIFICATIONS = {
    OrderStatus.CONFIRMED: "✅ ¡Tu orden #{id} ha sido confirmada y validada! Estamos preparándola.",
    OrderStatus.SHIPPED: "🚚 ¡Buenas noticias! Tu orden #{id} va en camino. Pronto llegará a tu dirección.",
    OrderStatus.DELIVERED: "🎉 Tu orden #{id} ha sido entregada. ¡Gracias por confiar en nosotros!",
    OrderStatus.CANCELLED: "❌ Tu orden #{id} ha sido cancelada. Si crees que es un error, contáctanos.",
}
OWNER_SETTABLE_STATUSES = frozenset({OrderStatus.PENDING, *_STATUS_NOTIFICATIONS})


def format_amount(amount: float) -> str:
    return f"${amount:,.0f}"


def _parse_item(raw: Any) -> tuple[str, int]:
    """Normalise a requested line into ``(identifier, quantity)``."""
    if isinstance(raw, str):
        return raw.strip(), 1
    if isinstance(raw, dict):
        identifier = raw.get("productIdentifier") or raw.get("retailerId") or raw.get("name") or ""
        quantity = int(raw.get("quantity") or 1)
        return str(identifier).strip(), max(quantity, 1)
    raise ValueError(f"Unsupported order item: {raw!r}")


def resolve_product(products: list[Product], identifier: str) -> Product | None:
    """Match by retailer id, then exact name, then name substring (all case-insensitive)."""
    needle = identifier.strip().lower()
    if not needle:
        return None
    for matches in (
        lambda p: p.retailer_id.lower() == needle,
        lambda p: p.name.lower() == needle,
        lambda p: needle in p.name.lower(),
    ):
        found = next((p for p in products if matches(p)), None)
        if found is not None:
            return found
    return None


class OrderManager:
    def __init__(self, store: Store, events: EventPublisher) -> None:
        self._store = store
        self._events = events

    def _latest(self, persona: Persona, contact: Contact, statuses: Iterable[OrderStatus]) -> Order | None:
        return self._store.latest_order(persona.id, contact.id, statuses)

    # ── Catalog ──────────────────────────────────────────────────────

    def search_products(self, keyword: str, persona: Persona) -> str:
        products = self._store.search_products(persona.id, keyword or "", limit=SEARCH_LIMIT)
        if not products:
            return "No products found matching that keyword."
        return json.dumps(
            [
                {
                    "name": p.name,
                    "price": p.price,
                    "currency": p.currency,
                    "availability": p.availability,
                }
                for p in products
            ],
            ensure_ascii=False,
        )

    # ── Customer-side lifecycle ──────────────────────────────────────

    def create_order(
        self,
        items: list[Any],
        delivery_address: str | None,
        persona: Persona,
        contact: Contact,
    ) -> ActionResult:
        try:
            if not items:
                return ActionResult.fail("The order has no items. Ask the customer what they want to buy.")

            # Best-effort single active order check (no locking across turns)
            active = self._latest(persona, contact, NON_TERMINAL_ORDER_STATUSES)
            if active is not None:
                return ActionResult.fail(
                    f"An order already exists (#{active.short_id}, {active.status.value}). "
                    "It must be completed or cancelled before creating a new one."
                )

            catalog = self._store.list_products(persona.id)
            lines: list[OrderItem] = []
            for raw in items:
                identifier, quantity = _parse_item(raw)
                product = resolve_product(catalog, identifier)
                if product is None:
                    logger.warning("Order item %r not found in catalog of %s", identifier, persona.id)
                    lines.append(OrderItem(
                        product_id=UNKNOWN_PRODUCT_ID, name=identifier or "Unknown item",
                        quantity=quantity, price=0, currency=DEFAULT_CURRENCY,
                    ))
                else:
                    lines.append(OrderItem(
                        product_id=product.retailer_id, name=product.name,
                        quantity=quantity, price=product.price, currency=product.currency,
                    ))

            # Unknown lines are priced 0 and carry no currency of their own
            currencies = {line.currency for line in lines if line.product_id != UNKNOWN_PRODUCT_ID}
            if len(currencies) > 1:
                logger.warning("Mixed-currency order refused for %s: %s", contact.phone_number, sorted(currencies))
                return ActionResult.fail(
                    "These items are priced in different currencies and cannot be in one order. "
                    "Ask the customer to order them separately."
                )

            order = Order(
                owner_id=persona.id,
                contact_id=contact.id,
                items=lines,
                total_amount=sum(line.subtotal for line in lines),
                currency=currencies.pop() if currencies else DEFAULT_CURRENCY,
                delivery_address=(delivery_address or "").strip() or "not_specified",
            )
            self._store.save_order(order)
            logger.info("Created order %s for %s (total %.2f)", order.id, contact.phone_number, order.total_amount)
            self._events.publish(persona.id, NEW_ORDER, order.model_dump(mode="json"))
            return ActionResult.ok(
                f"Order #{order.short_id} created. Total: {format_amount(order.total_amount)}. "
                "Need Payment Method."
            )
        except Exception:
            logger.exception("Failed to create order for %s", contact.phone_number)
            return ActionResult.fail("Failed to create the order. Please try again.")

    def update_payment_method(self, payment_method: str, persona: Persona, contact: Contact) -> ActionResult:
        try:
            method = (payment_method or "").strip().lower()
            if method not in PAYMENT_METHODS:
                return ActionResult.fail("Payment method must be 'transfer' or 'cash'.")

            order = self._latest(persona, contact, MUTABLE_ORDER_STATUSES)
            if order is None:
                return ActionResult.fail("No pending order found to update.")

            order.payment_method = method
            self._store.save_order(order)
            logger.info("Order %s payment method set to %s", order.id, method)
            if method == "transfer":
                return ActionResult.ok("Payment method updated to transfer. Waiting for proof.")
            return ActionResult.ok("Payment method updated to cash. The order will be paid on delivery.")
        except Exception:
            logger.exception("Failed to update payment method for %s", contact.phone_number)
            return ActionResult.fail("Failed to update the payment method. Please try again.")

    def register_payment_proof(self, proof_url: str | None, persona: Persona, contact: Contact) -> ActionResult:
        try:
            order = self._latest(persona, contact, MUTABLE_ORDER_STATUSES)
            if order is None:
                return ActionResult.fail("No pending order found for this payment proof.")

            order.payment_proof_url = (proof_url or "").strip() or DEFAULT_PROOF_URL
            order.status = OrderStatus.PENDING_VERIFICATION
            self._store.save_order(order)
            logger.info("Payment proof registered for order %s", order.id)
            self._events.publish(
                persona.id,
                PAYMENT_PROOF_RECEIVED,
                {"orderId": order.id, "proofUrl": order.payment_proof_url, "contactPhone": contact.phone_number},
            )
            return ActionResult.ok(
                f"Payment proof received for order #{order.short_id}. The business will verify it shortly."
            )
        except Exception:
            logger.exception("Failed to register payment proof for %s", contact.phone_number)
            return ActionResult.fail("Failed to register the payment proof. Please try again.")

    def cancel_order(self, persona: Persona, contact: Contact) -> ActionResult:
        try:
            order = self._latest(persona, contact, MUTABLE_ORDER_STATUSES)
            if order is None:
                return ActionResult.fail("No active order found to cancel.")

            order.status = OrderStatus.CANCELLED
            self._store.save_order(order)
            logger.info("Order %s cancelled by customer", order.id)
            self._events.publish(persona.id, ORDER_CANCELLED, order.model_dump(mode="json"))
            return ActionResult.ok(f"Order #{order.short_id} has been cancelled.")
        except Exception:
            logger.exception("Failed to cancel order for %s", contact.phone_number)
            return ActionResult.fail("Failed to cancel the order. Please try again.")

    def get_order_status(self, persona: Persona, contact: Contact) -> str:
        order = self._latest(persona, contact, NON_TERMINAL_ORDER_STATUSES)
        if order is None:
            return "You have no active orders."
        return (
            f"Your Order #{order.short_id} is currently: {order.status.value.upper()}. "
            f"Total: {format_amount(order.total_amount)}."
        )

    # ── Owner-side transition ────────────────────────────────────────

    def update_status(self, order_id: str, status: str) -> tuple[Order, str | None]:
        """Set the status of an order and return it with the customer notification.

        Raises ``ValueError`` for statuses the owner cannot set and
        ``LookupError`` when the order does not exist.  The notification is
        ``None`` when the status did not change.
        """
        try:
            new_status = OrderStatus(status)
        except ValueError:
            new_status = None
        if new_status not in OWNER_SETTABLE_STATUSES:
            allowed = ", ".join(sorted(s.value for s in OWNER_SETTABLE_STATUSES))
            raise ValueError(f"Invalid status. Must be one of: {allowed}")

        order = self._store.get_order(order_id)
        if order is None:
            raise LookupError(f"Order {order_id} not found")

        previous = order.status
        order.status = new_status
        self._store.save_order(order)
        logger.info("Order %s status %s -> %s", order.id, previous.value, new_status.value)

        if previous == new_status or new_status not in _STATUS_NOTIFICATIONS:
            return order, None
        if new_status == OrderStatus.CANCELLED:
            self._events.publish(order.owner_id, ORDER_CANCELLED, order.model_dump(mode="json"))
        return order, _STATUS_NOTIFICATIONS[new_status].format(id=order.short_id)
