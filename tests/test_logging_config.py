"""
Brief: Tests for dohdns.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

import pytest

from dohdns.config.logging_config import (
    REQUEST_LOGGER,
    BracketLevelFormatter,
    SyslogFormatter,
    get_request_logger,
    init_logging,
    parse_level,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures root logger with stderr handler by default.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(type(h) is logging.StreamHandler for h in root.handlers)


def test_init_logging_without_stderr():
    init_logging({"stderr": False})
    assert logging.getLogger().handlers == []


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates file handler and writes formatted entries.

    Inputs:
      - cfg: file path and level

    Outputs:
      - None: Asserts file created and contains message
    """
    log_path = tmp_path / "logs" / "dohdns.log"
    init_logging({"level": "info", "stderr": False, "file": str(log_path)})
    logging.getLogger("dohdns.test").info("file message")
    for h in logging.getLogger().handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "[info] dohdns.test:" in content


def test_init_logging_syslog_dict(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler with address/facility/tag.

    Inputs:
      - syslog: dict

    Outputs:
      - None: Asserts dummy handler receives the configured values
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_USER = 8
        LOG_DAEMON = 24

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def setFormatter(self, fmt):
            created["formatter"] = fmt

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)
    init_logging(
        {
            "stderr": False,
            "syslog": {"address": ["127.0.0.1", 514], "facility": "daemon", "tag": "doh"},
        }
    )
    assert created["address"] == ("127.0.0.1", 514)
    assert created["facility"] == 24
    assert created["formatter"].tag == "doh"


def test_bracket_formatter_tags_and_utc():
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(message)s")
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
    record.created = 0.0
    assert fmt.format(record) == "1970-01-01T00:00:00Z [warn] careful"


def test_syslog_formatter_has_no_timestamp():
    record = logging.LogRecord("dohdns.main", logging.ERROR, __file__, 1, "bad", None, None)
    assert SyslogFormatter().format(record) == "dohdns: [error] dohdns.main: bad"


def test_parse_level():
    assert parse_level("WARN") == logging.WARNING
    assert parse_level("crit") == logging.CRITICAL
    assert parse_level("nonsense") == logging.INFO


def test_get_request_logger():
    assert get_request_logger(None).name == REQUEST_LOGGER
    assert get_request_logger({"requests": False}) is None
