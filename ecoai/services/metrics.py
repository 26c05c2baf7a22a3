"""CloudWatch custom metrics emitter with background batching.

Tracks the calls a conversation turn makes (completion service, tool
executions, WhatsApp Graph API) and per-tenant token consumption.

Design
------
* Data points are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer every ``FLUSH_INTERVAL_SECONDS``
  when ``METRICS_ENABLED=true``; otherwise points are only logged at
  DEBUG level and dropped on flush.
* One ``put_metric_data`` call carries at most ``MAX_BATCH_SIZE`` points.

Usage
-----
>>> from ecoai.services.metrics import metrics
>>> metrics.record_success("anthropic", "llm_invoke", latency_ms=812.0)
>>> metrics.record_failure("tool", "bookAppointment", error_type="ValueError")
>>> metrics.record_token_usage("owner-1", Usage(total_tokens=420))
>>> with metrics.timed("tool", "checkAvailability"):
...     run_tool()
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from ecoai.models import Usage

logger = logging.getLogger(__name__)

NAMESPACE = "EcoAI"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Count one successful call and its latency."""
        now = datetime.now(UTC)
        self._point("Calls/Count", _dims(Service=service, Status="success"), 1, "Count", now)
        self._point(
            "Calls/Latency", _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now,
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Count one failed call, its error type and (when known) latency."""
        now = datetime.now(UTC)
        self._point("Calls/Count", _dims(Service=service, Status="failure"), 1, "Count", now)
        self._point("Calls/Errors", _dims(Service=service, ErrorType=error_type), 1, "Count", now)
        if latency_ms > 0:
            self._point(
                "Calls/Latency", _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now,
            )
        logger.debug("Metric: %s %s failed (%s)", service, operation, error_type)

    def record_token_usage(self, tenant_id: str, usage: Usage) -> None:
        """Record the tokens one turn consumed for a tenant."""
        if usage.total_tokens <= 0:
            return
        now = datetime.now(UTC)
        dims = _dims(Tenant=tenant_id)
        self._point("Tokens/Prompt", dims, usage.prompt_tokens, "Count", now)
        self._point("Tokens/Completion", dims, usage.completion_tokens, "Count", now)
        self._point("Tokens/Total", dims, usage.total_tokens, "Count", now)

    @contextmanager
    def timed(self, service: str, operation: str) -> Iterator[None]:
        """Time the wrapped block; record success, or failure and re-raise."""
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.record_failure(
                service, operation,
                error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        self.record_success(service, operation, latency_ms=(time.perf_counter() - t0) * 1000)

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    # ── Internal ──────────────────────────────────────────────────────

    def _point(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        unit: str,
        timestamp: datetime,
    ) -> None:
        datum = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(datum)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
