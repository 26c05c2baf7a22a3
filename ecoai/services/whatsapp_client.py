"""HTTP client for the WhatsApp Cloud API (Meta Graph API) with retry logic
and timeout handling.

API docs: https://developers.facebook.com/docs/whatsapp/cloud-api/
Each tenant may carry its own token and phone number id; the environment
values are used when a persona has none.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx

from ecoai.config import GRAPH_API_BASE_URL, WHATSAPP_PHONE_NUMBER_ID, WHATSAPP_TOKEN
from ecoai.models import Persona
from ecoai.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class WhatsAppAPIError(Exception):
    """Raised when a Graph API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class WhatsAppClient:
    """Sends messages on behalf of one WhatsApp business phone number."""

    def __init__(self, token: str, phone_number_id: str, base_url: str | None = None):
        if not token or not phone_number_id:
            raise WhatsAppAPIError("WhatsApp token and phone number id are required")
        self.phone_number_id = phone_number_id
        self._client = httpx.Client(
            base_url=base_url or GRAPH_API_BASE_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def _request(self, method: str, path: str, *, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(method, path, json=json_body)
                if response.status_code >= 400:
                    raise WhatsAppAPIError(
                        f"Graph API error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success("whatsapp", f"{method} {path}", latency_ms=(time.perf_counter() - t0) * 1000)
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure("whatsapp", f"{method} {path}", error_type=type(exc).__name__)
                logger.warning(
                    "Graph API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt, MAX_RETRIES, type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except WhatsAppAPIError as exc:
                metrics.record_failure("whatsapp", f"{method} {path}", error_type=f"http_{exc.status_code}")
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning("Graph API server error on attempt %d/%d. Retrying…", attempt, MAX_RETRIES)
                else:
                    raise  # 4xx errors are not retried

            time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise WhatsAppAPIError(f"Graph API request failed after {MAX_RETRIES} retries: {last_error}")

    def send_text(self, to: str, body: str) -> dict[str, Any]:
        """Send a plain text message to *to* (E.164 digits, no '+')."""
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        result = self._request("POST", f"/{self.phone_number_id}/messages", json_body=payload)
        logger.info("WhatsApp message sent to %s via %s", to, self.phone_number_id)
        return result


# ── Per-credential clients (thread-safe) ─────────────────────────────
_clients: dict[tuple[str, str], WhatsAppClient] = {}
_clients_lock = threading.Lock()


def get_whatsapp_client(persona: Persona | None = None) -> WhatsAppClient:
    """Return the shared client for the persona's credentials (or the env defaults).

    Uses double-checked locking so the lock is only taken when a new set of
    credentials is seen.
    """
    token = (persona.whatsapp.token if persona else "") or WHATSAPP_TOKEN
    phone_number_id = (persona.whatsapp.phone_number_id if persona else "") or WHATSAPP_PHONE_NUMBER_ID
    key = (token, phone_number_id)
    client = _clients.get(key)
    if client is None:
        with _clients_lock:
            client = _clients.get(key)
            if client is None:
                client = WhatsAppClient(token, phone_number_id)
                _clients[key] = client
    return client


def send_reply(to: str, text: str, persona: Persona) -> None:
    """Reply callback used by the webhook: deliver *text* through the Graph API."""
    get_whatsapp_client(persona).send_text(to, text)
