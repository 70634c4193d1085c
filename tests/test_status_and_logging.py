"""
Brief: Tests for latency status helpers and logging initialization.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest

from sampwatch.logging_config import BracketLevelFormatter, init_logging, parse_level
from sampwatch.status import infer_status, quality_level


@pytest.mark.parametrize(
    "latency,online,expected",
    [(10, True, "online"), (299, True, "online"), (300, True, "unstable"), (None, True, "offline"), (5, False, "offline")],
)
def test_infer_status(latency, online, expected):
    """Brief: Latency under 300 ms is online, otherwise unstable."""
    assert infer_status(latency, online) == expected


@pytest.mark.parametrize(
    "latency,expected",
    [(0, "excellent"), (49, "excellent"), (50, "good"), (149, "good"), (150, "fair"), (300, "poor"), (None, "unavailable")],
)
def test_quality_level(latency, expected):
    """Brief: Quality buckets follow the latency thresholds."""
    assert quality_level(latency) == expected


def test_bracket_formatter_tags_levels():
    """Brief: Formatter renders lowercase bracketed tags and UTC timestamps."""
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    record = logging.LogRecord("sampwatch.test", logging.WARNING, __file__, 1, "hello %s", ("x",), None)
    out = fmt.format(record)
    assert "[warn] sampwatch.test: hello x" in out
    assert out.split(" ")[0].endswith("Z")


def test_init_logging_file_handler(tmp_path):
    """
    Brief: init_logging installs a file handler and sets the root level.

    Inputs:
      - tmp_path: directory for the log file

    Outputs:
      - None: Asserts the message is written to the file
    """
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "sampwatch.log"
    try:
        init_logging({"level": "debug", "stderr": False, "file": str(log_file)})
        assert root.level == logging.DEBUG
        logging.getLogger("sampwatch.test").debug("written to file")
        for h in root.handlers:
            h.flush()
        assert "[debug] sampwatch.test: written to file" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)


def test_init_logging_unknown_level_defaults_to_info():
    """Brief: Unknown level names fall back to INFO."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        init_logging({"level": "chatty", "stderr": True})
        assert root.level == logging.INFO
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)


def test_init_logging_routes_uvicorn_and_access_toggle():
    """Brief: uvicorn loggers propagate to root; access_log=False quiets access lines."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    access = logging.getLogger("uvicorn.access")
    stray = logging.NullHandler()
    access.addHandler(stray)
    try:
        init_logging({"stderr": False, "access_log": False})
        assert stray not in access.handlers
        assert access.propagate is True
        assert access.level == logging.WARNING
        assert logging.getLogger("uvicorn.error").level == logging.NOTSET
        assert root.handlers == []
    finally:
        access.setLevel(logging.NOTSET)
        for h in list(root.handlers):
            root.removeHandler(h)
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)


@pytest.mark.parametrize("name,expected", [("warn", logging.WARNING), ("CRIT", logging.CRITICAL), (None, logging.INFO)])
def test_parse_level(name, expected):
    """Brief: Level names are case-insensitive and default to INFO."""
    assert parse_level(name) == expected
