"""Tests for JSON logging."""

import io
import json
import logging

import pytest

from secondfactor.core.config import settings
from secondfactor.core.logging import QUIET_LOGGERS, ServiceJsonFormatter, setup_logging
from secondfactor.core.security_logging import log_security_event


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def test_formatter_tags_service_and_env() -> None:
    record = logging.LogRecord("secondfactor.mfa", logging.WARNING, __file__, 1, "Rejected %s", ("code",), None)
    record.principal_id = "user-1"

    line = json.loads(ServiceJsonFormatter("secondfactor", "test").format(record))

    assert line["msg"] == "Rejected code"
    assert line["level"] == "WARNING"
    assert line["logger"] == "secondfactor.mfa"
    assert line["service"] == "secondfactor"
    assert line["env"] == "test"
    assert line["principal_id"] == "user-1"
    assert "message" not in line


def test_setup_logging_writes_json_lines(restore_root_logger) -> None:
    stream = io.StringIO()
    setup_logging("DEBUG", stream=stream)
    setup_logging("DEBUG", stream=stream)

    assert len(logging.getLogger().handlers) == 1
    for name, level in QUIET_LOGGERS.items():
        assert logging.getLogger(name).level == level

    log_security_event("mfa_login_failed", "deny", reason_code="INVALID_CODE", principal_id="user-1")

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert line["event_type"] == "mfa_login_failed"
    assert line["outcome"] == "deny"
    assert line["reason_code"] == "INVALID_CODE"
    assert line["service"] == settings.PROJECT_NAME
