from __future__ import annotations
import logging
import sys
import os
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

# uvicorn installs its own handlers unless run with log_config=None; these are
# the loggers it writes to.
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

LOG_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"


class BracketLevelFormatter(logging.Formatter):
    """Formatter that adds bracketed lowercase level tags and UTC timestamps."""

    _TAGS = {
        logging.DEBUG: "[debug]",
        logging.INFO: "[info]",
        logging.WARNING: "[warn]",
        logging.ERROR: "[error]",
        logging.CRITICAL: "[crit]",
    }

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = self._TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


def parse_level(value: Any) -> int:
    """Brief: Map a level name ('warn', 'debug', ...) to a logging constant.

    Inputs:
      - value: Level name; unknown or empty values mean INFO.

    Outputs:
      - int logging level.
    """

    return _LEVELS.get(str(value or "info").strip().lower(), logging.INFO)


def _build_handlers(cfg: Mapping[str, Any]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        handlers.append(logging.StreamHandler(sys.stderr))

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))
    return handlers


def init_logging(cfg: Optional[Mapping[str, Any]]) -> None:
    """
    Configure sampwatch and uvicorn logging from the `logging` config section.

    Args:
        cfg: Mapping with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: path to an append-mode log file
            - access_log: keep per-request uvicorn access lines (default: True)

    Notes:
        Handlers live on the root logger only. uvicorn's loggers are stripped
        of their own handlers and propagate, so every line shares one format.

    Example:
        >>> init_logging({"level": "debug", "file": "./sampwatch.log"})
    """
    cfg = cfg or {}
    level = parse_level(cfg.get("level"))
    formatter = BracketLevelFormatter(fmt=LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    # Replace rather than append so re-initialisation never duplicates lines.
    for h in list(root.handlers):
        root.removeHandler(h)
    for handler in _build_handlers(cfg):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in UVICORN_LOGGERS:
        uv = logging.getLogger(name)
        for h in list(uv.handlers):
            uv.removeHandler(h)
        uv.propagate = True
        uv.setLevel(logging.NOTSET)
    if not cfg.get("access_log", True):
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.captureWarnings(True)
