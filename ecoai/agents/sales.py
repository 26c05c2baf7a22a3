"""Sales strategy: catalog questions and the order lifecycle."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ecoai.agents.base import UPDATE_CONTACT_NAME_SCHEMA, AgentStrategy, ToolContext, ToolFunction, update_contact_name
from ecoai.models import AgentType, Contact, Persona, utcnow
from ecoai.prompts import get_sales_prompt
from ecoai.services.orders import PAYMENT_METHODS, OrderManager

_NO_ARGS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}

SALES_TOOLS: list[dict[str, Any]] = [
    {
        "name": "searchProducts",
        "description": "Search for products in the catalog by keyword.",
        "parameters": {
            "type": "object",
            "properties": {
                "keyword": {"type": "string", "description": "Word contained in the product name."},
            },
            "required": ["keyword"],
        },
    },
    UPDATE_CONTACT_NAME_SCHEMA,
    {
        "name": "createOrder",
        "description": "Create an order with the products the user wants to buy.",
        "parameters": {
            "type": "object",
            "properties": {
                "items": {
                    "type": "array",
                    "description": "Products to order.",
                    "items": {
                        "type": "object",
                        "properties": {
                            "productIdentifier": {
                                "type": "string",
                                "description": "Retailer id (e.g. PROD_001) or product name.",
                            },
                            "quantity": {"type": "integer", "minimum": 1},
                        },
                        "required": ["productIdentifier"],
                    },
                },
                "deliveryAddress": {"type": "string", "description": "Where to deliver the order."},
            },
            "required": ["items"],
        },
    },
    {
        "name": "updateOrderPaymentMethod",
        "description": "Set how the user will pay for their pending order.",
        "parameters": {
            "type": "object",
            "properties": {
                "paymentMethod": {"type": "string", "enum": list(PAYMENT_METHODS)},
            },
            "required": ["paymentMethod"],
        },
    },
    {
        "name": "registerPaymentProof",
        "description": "Register that the user sent proof of a transfer for their pending order.",
        "parameters": {
            "type": "object",
            "properties": {
                "proofUrl": {"type": "string", "description": "Link to the proof, if there is one."},
            },
            "required": [],
        },
    },
    {
        "name": "cancelOrder",
        "description": "Cancel the user's pending order.",
        "parameters": _NO_ARGS,
    },
    {
        "name": "getOrderStatus",
        "description": "Get the status of the user's current order.",
        "parameters": _NO_ARGS,
    },
]


class SalesAgent(AgentStrategy):
    agent_type = AgentType.SALES

    def system_prompt(self, persona: Persona, contact: Contact, now: datetime | None = None) -> str:
        return get_sales_prompt(persona, contact, now or utcnow())

    def tool_schemas(self) -> list[dict[str, Any]]:
        return SALES_TOOLS

    def tool_implementations(self, context: ToolContext) -> dict[str, ToolFunction]:
        orders = OrderManager(context.store, context.events)
        persona = context.persona

        def search_products(keyword: str = "") -> str:
            return orders.search_products(keyword, persona)

        def create_order(items: list[Any] | None = None, deliveryAddress: str | None = None) -> str:  # noqa: N803
            return orders.create_order(items or [], deliveryAddress, persona, context.contact).to_tool_content()

        def update_payment_method(paymentMethod: str = "") -> str:  # noqa: N803
            return orders.update_payment_method(paymentMethod, persona, context.contact).to_tool_content()

        def register_payment_proof(proofUrl: str | None = None) -> str:  # noqa: N803
            return orders.register_payment_proof(proofUrl, persona, context.contact).to_tool_content()

        return {
            "searchProducts": search_products,
            "updateContactName": lambda name="": update_contact_name(context, name),
            "createOrder": create_order,
            "updateOrderPaymentMethod": update_payment_method,
            "registerPaymentProof": register_payment_proof,
            "cancelOrder": lambda: orders.cancel_order(persona, context.contact).to_tool_content(),
            "getOrderStatus": lambda: orders.get_order_status(persona, context.contact),
        }
