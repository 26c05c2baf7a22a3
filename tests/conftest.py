"""Shared test fixtures for the EcoAI test suite."""

from __future__ import annotations

import os
from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

BOGOTA = ZoneInfo("America/Bogota")
# Monday 10 June 2024, 07:00 in Bogotá (12:00 UTC)
NOW = datetime(2024, 6, 10, 7, 0, tzinfo=BOGOTA)
OWNER_ID = "owner-1"
PHONE = "573001112233"


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("WHATSAPP_TOKEN", "test-whatsapp-token")
    os.environ.setdefault("WHATSAPP_PHONE_NUMBER_ID", "100200300")
    os.environ["METRICS_ENABLED"] = "false"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store():
    from ecoai.services.store import InMemoryStore

    return InMemoryStore()


@pytest.fixture
def events():
    from ecoai.services.events import EventBus

    return EventBus()


@pytest.fixture
def published(events):
    """List of ``(tenant_id, event_name, payload)`` published on the bus."""
    from ecoai.services.events import ALL_TENANTS

    received: list[tuple[str, str, dict]] = []
    events.subscribe(ALL_TENANTS, lambda tenant, name, payload: received.append((tenant, name, payload)))
    return received


@pytest.fixture
def persona(store):
    from ecoai.models import BusinessContext, Persona, ServiceItem

    persona = Persona(
        id=OWNER_ID,
        first_name="Laura",
        bot_name="Sofi",
        business=BusinessContext(
            services=[
                ServiceItem(name="Haircut", price=35000, duration=30),
                ServiceItem(name="Manicure", price=25000, duration=45),
            ],
            location="Calle 85, Bogotá",
        ),
    )
    persona.whatsapp.phone_number_id = "PNID-1"
    store.save_persona(persona)
    return persona


@pytest.fixture
def sales_persona(store):
    from ecoai.models import Persona, Product

    persona = Persona(id="store-1", bot_name="Max", agent_type="sales")
    store.save_persona(persona)
    store.save_product(Product(owner_id="store-1", retailer_id="PROD_001", name="Café de origen 500g", price=25000))
    store.save_product(Product(owner_id="store-1", retailer_id="PROD_002", name="Panela orgánica", price=8000))
    return persona


@pytest.fixture
def contact(store, persona):
    return store.get_or_create_contact(persona.id, PHONE)


@pytest.fixture
def mock_graph_response():
    """Factory fixture for creating mock Graph API responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make
