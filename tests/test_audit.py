"""Tests for chat_gateway/logging/audit.py: JSON audit logging and redaction."""

import json
import logging
import sys

import pytest

from chat_gateway.logging.audit import (
    JSONFormatter,
    RequestTimer,
    generate_request_id,
    get_audit_logger,
    provider_var,
    redact,
    request_id_var,
    setup_logging,
)


def _record(msg: str = "test") -> logging.LogRecord:
    return logging.LogRecord(
        name="test", level=logging.INFO, pathname="",
        lineno=0, msg=msg, args=(), exc_info=None,
    )


class TestJSONFormatter:

    def test_output_is_valid_json(self):
        output = JSONFormatter().format(_record("hello"))
        parsed = json.loads(output)
        assert parsed["message"] == "hello"
        assert parsed["level"] == "INFO"
        assert "timestamp" in parsed

    def test_includes_request_id(self):
        token = request_id_var.set("req-abc123")
        try:
            parsed = json.loads(JSONFormatter().format(_record()))
            assert parsed["request_id"] == "req-abc123"
        finally:
            request_id_var.reset(token)

    def test_includes_provider(self):
        token = provider_var.set("anthropic")
        try:
            parsed = json.loads(JSONFormatter().format(_record()))
            assert parsed["provider"] == "anthropic"
        finally:
            provider_var.reset(token)

    def test_includes_audit_data(self):
        record = _record()
        record.audit_data = {"attempt": 2, "model": "gpt-4o"}
        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["attempt"] == 2
        assert parsed["model"] == "gpt-4o"

    def test_audit_data_secrets_redacted(self):
        record = _record()
        record.audit_data = {"api_key": "sk-live-secret-value", "model": "gpt-4o"}
        output = JSONFormatter().format(record)
        assert "sk-live-secret-value" not in output
        assert json.loads(output)["api_key"] == "len:20"

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                name="test", level=logging.ERROR, pathname="",
                lineno=0, msg="failed", args=(), exc_info=sys.exc_info(),
            )
        parsed = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in parsed["exception"]

    def test_empty_request_id_default(self):
        parsed = json.loads(JSONFormatter().format(_record()))
        assert parsed["request_id"] == ""


class TestRedact:

    def test_nested(self):
        data = {"config": {"Authorization": "Bearer abc", "endpoint": "https://x"}, "token": ""}
        assert redact(data) == {"config": {"Authorization": "len:10", "endpoint": "https://x"}, "token": "empty"}

    def test_input_not_mutated(self):
        data = {"api_key": "secret"}
        redact(data)
        assert data == {"api_key": "secret"}


class TestGenerateRequestId:

    def test_length(self):
        assert len(generate_request_id()) == 12

    def test_uniqueness(self):
        ids = {generate_request_id() for _ in range(100)}
        assert len(ids) == 100


class TestRequestTimer:

    def test_measures_elapsed(self):
        with RequestTimer() as timer:
            _ = sum(range(1000))
        assert timer.elapsed_ms > 0
        assert isinstance(timer.elapsed_ms, float)


@pytest.fixture
def restore_audit_logger():
    logger = get_audit_logger()
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestSetupLogging:

    def test_creates_stdout_handler(self, override_settings, restore_audit_logger):
        override_settings(AUDIT_LOG_FILE="")
        setup_logging()
        logger = restore_audit_logger
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)
        assert logger.propagate is False

    def test_file_handler(self, override_settings, restore_audit_logger, tmp_path):
        path = tmp_path / "audit.log"
        override_settings(AUDIT_LOG_FILE=str(path), LOG_LEVEL="DEBUG")
        setup_logging()
        logger = restore_audit_logger
        assert logger.level == logging.DEBUG

        logger.info("Request completed", extra={"audit_data": {"latency_ms": 1.5}})
        for handler in logger.handlers:
            handler.flush()
        line = path.read_text(encoding="utf-8").strip()
        assert json.loads(line)["latency_ms"] == 1.5
