from __future__ import annotations

import io
import logging

import pytest

import inbox_ledger.logging_setup as logging_setup
from inbox_ledger.logging_setup import THIRD_PARTY_LOGGERS, configure_logging, get_logger, redact


@pytest.fixture
def pkg_logger(monkeypatch: pytest.MonkeyPatch):
    logger = logging.getLogger("inbox_ledger")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    saved_levels = {name: logging.getLogger(name).level for name in THIRD_PARTY_LOGGERS}
    monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]
    for name, level in saved_levels.items():
        logging.getLogger(name).setLevel(level)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Authorization: Bearer ya29.a0AfB_xyz", "Authorization: Bearer ***"),
        ('{"access_token": "ya29.secret", "x": 1}', '{"access_token": "***", "x": 1}'),
        (
            "GET /callback?state=s&code=4/0Abc&scope=gmail",
            "GET /callback?state=s&code=***&scope=gmail",
        ),
        ("key sk-proj-abcdefghijkl rejected", "key sk-*** rejected"),
        (
            "mailbox:detail_failed message_id=m1 status=500",
            "mailbox:detail_failed message_id=m1 status=500",
        ),
    ],
)
def test_redact(text: str, expected: str):
    assert redact(text) == expected


def test_configure_formats_redacts_and_quiets_clients(pkg_logger: logging.Logger):
    out = io.StringIO()

    configure_logging("INFO", stream=out)
    get_logger("inbox_ledger.mailbox").info("mailbox:request header=%s", "Bearer tok-123")
    get_logger("inbox_ledger.sync").debug("sync:hidden")

    text = out.getvalue()
    assert "INFO    inbox_ledger.mailbox mailbox:request header=Bearer ***" in text
    assert "tok-123" not in text
    assert "sync:hidden" not in text
    assert all(logging.getLogger(n).level == logging.WARNING for n in THIRD_PARTY_LOGGERS)
    assert pkg_logger.propagate is False


def test_debug_level_lets_client_logs_through(pkg_logger: logging.Logger):
    configure_logging("debug", stream=io.StringIO())

    assert logging.getLogger("httpx").level == logging.DEBUG
    assert pkg_logger.level == logging.DEBUG


def test_configure_runs_once_unless_forced(pkg_logger: logging.Logger):
    first, second = io.StringIO(), io.StringIO()

    configure_logging("INFO", stream=first)
    configure_logging("INFO", stream=second)
    get_logger("inbox_ledger.ledger").info("ledger:one")
    configure_logging("INFO", stream=second, force=True)
    get_logger("inbox_ledger.ledger").info("ledger:two")

    assert "ledger:one" in first.getvalue()
    assert "ledger:two" not in first.getvalue()
    assert "ledger:one" not in second.getvalue()
    assert "ledger:two" in second.getvalue()


def test_level_from_environment(pkg_logger: logging.Logger, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("INBOX_LEDGER_LOG_LEVEL", "WARNING")

    configure_logging(stream=io.StringIO())

    assert pkg_logger.level == logging.WARNING


@pytest.mark.parametrize(("level", "expected"), [("15", 15), ("verbose", logging.INFO)])
def test_numeric_and_unknown_level_names(
    pkg_logger: logging.Logger, level: str, expected: int
):
    configure_logging(level, stream=io.StringIO())

    assert pkg_logger.level == expected
