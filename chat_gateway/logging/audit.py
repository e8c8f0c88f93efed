"""Structured JSON audit logging for the chat gateway.

Every pipeline phase (validation, admission, client build, attempts,
completion, failover) logs to the `gateway.audit` logger with its fields
under `extra={"audit_data": {...}}`. Output is one JSON object per line on
stdout, optionally mirrored to a file via AUDIT_LOG_FILE.

Secret-looking fields in audit_data are replaced with length markers
before they reach a handler.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

from chat_gateway.config.settings import get_settings

AUDIT_LOGGER = "gateway.audit"

# Request-scoped context for correlating log entries
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
provider_var: ContextVar[str] = ContextVar("provider", default="")

SECRET_FIELDS = frozenset({"api_key", "apikey", "authorization", "x-api-key", "secret", "token"})


def redact(data: dict) -> dict:
    """Copy of data with secret fields reduced to `len:<n>` / `empty`."""
    clean = {}
    for key, value in data.items():
        if key.lower() in SECRET_FIELDS:
            clean[key] = f"len:{len(value)}" if isinstance(value, str) and value else "empty"
        elif isinstance(value, dict):
            clean[key] = redact(value)
        else:
            clean[key] = value
    return clean


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
        }
        provider = provider_var.get("")
        if provider:
            log_entry["provider"] = provider
        if hasattr(record, "audit_data"):
            log_entry.update(redact(record.audit_data))
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging() -> None:
    """Configure the audit logger with JSON output."""
    settings = get_settings()

    logger = logging.getLogger(AUDIT_LOGGER)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    logger.handlers.clear()

    formatter = JSONFormatter()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    if settings.audit_log_file:
        file_handler = logging.FileHandler(settings.audit_log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger (avoids duplicate output)
    logger.propagate = False


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestTimer:
    """Context manager to measure call latency."""

    def __init__(self):
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
