import json
import logging

import pytest

from hybrid_retrieval.logging_utils import _JsonFormatter, resolve_level, setup_logging


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_json_lines_carry_extra_fields():
    rec = logging.LogRecord("hybrid_retrieval.retrieve", logging.INFO, __file__, 1, "retrieve %s", ("p1",), None)
    rec.project_id = "p1"
    rec.degraded = True
    rec.timers_ms = {"total_ms": 3}
    out = json.loads(_JsonFormatter().format(rec))
    assert out["msg"] == "retrieve p1"
    assert out["level"] == "INFO"
    assert out["project_id"] == "p1"
    assert out["degraded"] is True
    assert out["timers_ms"] == {"total_ms": 3}
    assert "args" not in out and "levelno" not in out


@pytest.mark.parametrize(
    "level,env,default,expected",
    [
        ("DEBUG", "ERROR", "WARNING", logging.DEBUG),
        (None, "ERROR", "WARNING", logging.ERROR),
        (None, None, "WARNING", logging.WARNING),
        (None, None, None, logging.INFO),
        (None, "chatty", "warning", logging.WARNING),
        ("10", None, None, logging.DEBUG),
    ],
)
def test_level_precedence(monkeypatch, level, env, default, expected):
    if env is None:
        monkeypatch.delenv("LOG_LEVEL", raising=False)
    else:
        monkeypatch.setenv("LOG_LEVEL", env)
    assert resolve_level(level, default) == expected


def test_setup_replaces_handler_and_quiets_backends(restore_root, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    setup_logging(level="DEBUG")
    applied = setup_logging(json_logs=True, default_level="INFO")
    assert applied == logging.INFO
    assert len(restore_root.handlers) == 1
    assert isinstance(restore_root.handlers[0].formatter, _JsonFormatter)
    assert logging.getLogger("urllib3").level == logging.WARNING
