from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional

# LogRecord attributes that are not caller-supplied ``extra=`` fields
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# embedding backends and their HTTP stacks
_NOISY = ("urllib3", "requests", "httpx", "filelock", "sentence_transformers", "fastembed")

_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


class _PlainFormatter(logging.Formatter):
    """Human-friendly single-line formatter (to stderr)."""

    default_fmt = "%(levelname)s %(name)s - %(message)s"
    verbose_fmt = (
        "%(asctime)s %(levelname)s %(name)s [%(threadName)s] "
        "%(filename)s:%(lineno)d - %(message)s"
    )
    datefmt = "%Y-%m-%d %H:%M:%S"

    def __init__(self, debug: bool = False) -> None:
        super().__init__(fmt=self.verbose_fmt if debug else self.default_fmt, datefmt=self.datefmt)


class _JsonFormatter(logging.Formatter):
    """
    One JSON object per record. Fields passed through ``extra=`` (the
    orchestrator sends project_id, degraded and timers_ms) land at top level
    next to the standard ones, so request logs can be filtered by project
    without parsing the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        payload.update(
            (k, v) for k, v in vars(record).items()
            if k not in _RESERVED and not k.startswith("_")
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _coerce_level(level: str | int | None) -> Optional[int]:
    """Level name or number -> int; None for anything unrecognised."""
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        upper = level.strip().upper()
        if upper in _LEVELS:
            return getattr(logging, upper)
        if upper.isdigit():
            return int(upper)
    return None


def resolve_level(level: str | int | None = None, default: str | int | None = None) -> int:
    """
    First usable of: explicit ``level`` (CLI flags), LOG_LEVEL, ``default``
    (``logging.level`` from config), INFO.
    """
    for candidate in (level, os.getenv("LOG_LEVEL"), default):
        lvl = _coerce_level(candidate)
        if lvl is not None:
            return lvl
    return logging.INFO


def setup_logging(
    level: str | int | None = None,
    json_logs: bool = False,
    default_level: str | int | None = None,
) -> int:
    """
    Configure root logging for the process with a single stderr handler.
    Safe to call again (the CLI does once the config file is loaded); the
    previous handler is replaced.

    Args:
        level: Explicit level, wins over everything else.
        json_logs: Emit JSON lines instead of plain text.
        default_level: Level to use when neither ``level`` nor LOG_LEVEL is set.

    Returns the level applied.
    """
    final_level = resolve_level(level, default_level)

    root = logging.getLogger()
    root.setLevel(final_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(
        _JsonFormatter() if json_logs else _PlainFormatter(debug=(final_level <= logging.DEBUG))
    )
    root.addHandler(handler)

    for noisy in _NOISY:
        logging.getLogger(noisy).setLevel(max(final_level, logging.WARNING))
    return final_level
