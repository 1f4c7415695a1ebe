"""
Structured Logging
==================

JSON log output for the SLA engine.

Every record carries:
- an ISO-8601 UTC timestamp and the deployment environment
- the correlation id of the HTTP request that produced it, when there is one
- redacted values for credential-like keys

Usage:
    from helpdesk.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("SLA breached", extra={"ticket_id": ticket_id, "sla_type": "response"})
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"
_SENSITIVE_KEYS = ("password", "api_key", "authorization", "secret")

# Set by CorrelationIDMiddleware for the duration of a request
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    """Copy the current request's correlation id onto records that lack one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            correlation_id = correlation_id_var.get()
            if correlation_id:
                record.correlation_id = correlation_id
        return True


class SLAJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, environment and redaction."""

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["environment"] = self.environment
        if getattr(record, "correlation_id", None):
            log_record["correlation_id"] = record.correlation_id

        for key, value in list(log_record.items()):
            if isinstance(value, str) and any(s in key.lower() for s in _SENSITIVE_KEYS):
                log_record[key] = REDACTED


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """
    Route all logging through a single JSON handler on stdout.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR)
        environment: Value of the ``environment`` field on every record
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(SLAJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        environment=environment,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(handler)

    # Third-party chatter
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "watchdog"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Log how long the wrapped block took, in milliseconds.

    Usage:
        with log_latency(logger, "sla_breach_sweep"):
            await reconciler.sweep()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                **extra_context,
            },
        )
