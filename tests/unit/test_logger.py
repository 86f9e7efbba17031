"""Tests for JSON logging and request correlation."""

from __future__ import annotations

import json
import logging

import pytest
from tokenauth.core.logger import (
    REQUEST_ID_HEADER,
    SECURITY_LOGGER,
    JSONFormatter,
    RequestIdFilter,
    configure_logging,
    ensure_request_id,
    security_logger,
)


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_installs_single_json_handler(restore_root_logger):
    configure_logging("debug")
    root = restore_root_logger

    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    assert any(isinstance(f, RequestIdFilter) for f in root.handlers[0].filters)


def test_configure_logging_accepts_numeric_level(restore_root_logger):
    configure_logging(logging.ERROR)
    assert restore_root_logger.level == logging.ERROR


def test_json_formatter_copies_security_fields():
    record = logging.makeLogRecord(
        {
            "name": SECURITY_LOGGER,
            "levelname": "WARNING",
            "msg": "Refresh token reuse detected for %s",
            "args": ("u-1",),
            "event": "token.reuse",
            "user_id": "u-1",
            "family_id": "fam-1",
            "count": 3,
        }
    )

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "Refresh token reuse detected for u-1"
    assert payload["level"] == "WARNING"
    assert payload["name"] == SECURITY_LOGGER
    assert payload["event"] == "token.reuse"
    assert payload["family_id"] == "fam-1"
    assert payload["count"] == 3
    assert payload["request_id"] is None
    assert "jti" not in payload


def test_security_logger_name():
    assert security_logger().name == "tokenauth.security"


def test_request_id_taken_from_header(app):
    headers = {REQUEST_ID_HEADER: "req-123"}
    with app.app_context(), app.test_request_context("/", headers=headers):
        assert ensure_request_id() == "req-123"
        # Memoized for the rest of the request
        assert ensure_request_id() == "req-123"


def test_request_id_generated_outside_request():
    assert ensure_request_id() != ensure_request_id()
