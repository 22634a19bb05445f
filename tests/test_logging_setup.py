"""
Tests for logging_setup module.

Verifies:
- JSON structured logging format
- Case ID correlation
- PII-aware logging helpers
- Reserved record attributes never leak into the output
"""
import json
import logging
from datetime import datetime
from io import StringIO

import pytest

from logging_setup import (
    Component,
    JSONFormatter,
    get_logger,
    setup_logging,
)


@pytest.fixture
def capture_logs():
    """Capture root log output as JSON lines."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    old_handlers, old_level = root.handlers, root.level
    root.handlers = [handler]
    root.setLevel(logging.DEBUG)

    def entries():
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    yield entries

    root.handlers = old_handlers
    root.setLevel(old_level)


def test_json_entry(capture_logs):
    get_logger(Component.CALL_SIGNALING).info("Offer written", role="caller")

    entry = capture_logs()[0]
    assert entry["severity"] == "info"
    assert entry["component"] == "call_signaling"
    assert entry["message"] == "Offer written"
    assert entry["role"] == "caller"
    datetime.fromisoformat(entry["timestamp"].replace("Z", "+00:00"))


def test_case_id_bound(capture_logs):
    get_logger(Component.MEDIA, case_id="case-1").info("Requesting media")
    get_logger(Component.MEDIA).with_case("case-2").info("Requesting media")
    get_logger(Component.MEDIA).info("No case")

    first, second, third = capture_logs()
    assert first["case_id"] == "case-1"
    assert second["case_id"] == "case-2"
    assert "case_id" not in third


def test_pii_fields_kept_apart(capture_logs):
    get_logger(Component.CALL_SIGNALING, case_id="case-1").debug_pii("Caller name received", caller_name="Dr. Jansen")

    entry = capture_logs()[0]
    assert entry["severity"] == "debug"
    assert entry["pii"] == {"caller_name": "Dr. Jansen"}
    assert "caller_name" not in entry


def test_severity_levels(capture_logs):
    logger = get_logger(Component.PEER_CONNECTION)
    logger.debug("d")
    logger.info("i")
    logger.warning("w")
    logger.error("e")
    logger.critical("c")

    assert [e["severity"] for e in capture_logs()] == ["debug", "info", "warning", "error", "critical"]


def test_reserved_attributes_not_copied(capture_logs):
    get_logger(Component.SIGNALING_STORE).info("Document set", path="cases/c/calls/active_call")

    entry = capture_logs()[0]
    for key in ("msg", "args", "levelno", "pathname", "taskName", "thread"):
        assert key not in entry
    assert entry["path"] == "cases/c/calls/active_call"


def test_exception_logging(capture_logs):
    logger = get_logger(Component.ERROR_HANDLER)
    try:
        raise ValueError("bad sdp")
    except ValueError:
        logger.exception("Negotiation failed")

    entry = capture_logs()[0]
    assert entry["severity"] == "error"
    assert "ValueError: bad sdp" in entry["exception"]


def test_string_component(capture_logs):
    get_logger("custom").info("Test")
    assert capture_logs()[0]["component"] == "custom"


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    old_handlers, old_level = root.handlers[:], root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)


def test_setup_logging_json(restore_root_logger):
    setup_logging(level="DEBUG", use_json=True)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)


def test_setup_logging_text(restore_root_logger):
    setup_logging(level="warning", use_json=False)

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert not isinstance(root.handlers[0].formatter, JSONFormatter)
    # Records from plain loggers still format without a component
    assert root.handlers[0].formatter.format(
        logging.LogRecord("x", logging.WARNING, __file__, 1, "plain", None, None)
    ).endswith("unknown - plain")
