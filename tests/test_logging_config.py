"""
Tests for structured logging setup.
"""

import io
import json
import logging

import pytest
import structlog

from sessionkeys.config import settings
from sessionkeys.logging_config import session_log_context, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_json_lines_carry_session_context(restore_logging):
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)

    with session_log_context(session_id="s-1", permission_id="0xdeadbeef"):
        logging.getLogger("sessionkeys.core.session.manager").info("Session approved")

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert line["event"] == "Session approved"
    assert line["level"] == "info"
    assert line["logger"] == "sessionkeys.core.session.manager"
    assert line["session_id"] == "s-1"
    assert line["permission_id"] == "0xdeadbeef"
    assert line["chain_id"] == settings.chain_id


def test_context_is_unbound_after_block(restore_logging):
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)

    with session_log_context(session_id="s-1"):
        pass
    logging.getLogger("sessionkeys").info("outside")

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert "session_id" not in line


def test_level_filters_and_quiets_http_loggers(restore_logging):
    stream = io.StringIO()
    setup_logging("WARNING", stream=stream)

    logging.getLogger("sessionkeys").info("hidden")

    assert stream.getvalue() == ""
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_debug_uses_console_renderer(restore_logging):
    stream = io.StringIO()
    setup_logging("DEBUG", stream=stream)

    logging.getLogger("sessionkeys").debug("polling receipt")

    output = stream.getvalue()
    assert "polling receipt" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output.strip().splitlines()[-1])
