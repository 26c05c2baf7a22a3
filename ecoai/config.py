"""Centralized configuration for the EcoAI conversation service.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/ecoai/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 (optional aws extra)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/ecoai/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /ecoai/{name} (AWS)."
    )


def _optional_secret(name: str, default: str = "") -> str:
    """Like ``_require_env`` but falls back to *default* instead of raising."""
    try:
        return _require_env(name)
    except OSError:
        return default


def _int_env(name: str, default: int) -> int:
    """Parse an integer setting, failing loudly on garbage."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise OSError(f"Configuration {name} must be an integer, got {raw!r}") from exc


def _bool_env(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.1"))
LLM_MAX_TOKENS: int = _int_env("LLM_MAX_TOKENS", 1024)

# ── Conversation loop ───────────────────────────────────────────────
HISTORY_LIMIT: int = _int_env("HISTORY_LIMIT", 5)
MAX_TOOL_ITERATIONS: int = _int_env("MAX_TOOL_ITERATIONS", 5)

# ── Tenancy ─────────────────────────────────────────────────────────
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "America/Bogota")
# Tenant used when a webhook cannot be matched to a persona's phone number id
DEFAULT_OWNER_ID: str = os.getenv("DEFAULT_OWNER_ID", "")
SEED_FILE: str = os.getenv("SEED_FILE", "")

# ── WhatsApp Cloud API ──────────────────────────────────────────────
VERIFY_TOKEN: str = _optional_secret("VERIFY_TOKEN")
WHATSAPP_TOKEN: str = _optional_secret("WHATSAPP_TOKEN")
WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
GRAPH_API_BASE_URL: str = os.getenv("GRAPH_API_BASE_URL", "https://graph.facebook.com/v18.0")

# ── Reminders ───────────────────────────────────────────────────────
REMINDERS_ENABLED: bool = _bool_env("REMINDERS_ENABLED")
REMINDER_INTERVAL_SECONDS: int = _int_env("REMINDER_INTERVAL_SECONDS", 600)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
