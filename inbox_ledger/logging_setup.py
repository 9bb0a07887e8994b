"""Logging for the ``inbox_ledger`` CLI and library modules.

- ``configure_logging(...)``: attach one ``StreamHandler`` to the package
  root logger (``"inbox_ledger"``) and quiet the HTTP/OAuth client libraries.
  Called once by the CLI root callback.
- ``get_logger(name)``: acquire a module logger. Until logging is configured
  the package root carries a ``NullHandler``, so library use stays silent.

Messages use an ``event:key=value`` shape (``sync:done added=2 failed=0``).
Every record that reaches the handler passes through :class:`RedactSecrets`,
which masks bearer tokens, OAuth codes and API keys. The pipeline never logs
those values directly, but provider error strings interpolated into log
messages can carry them.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import IO

_PKG_LOGGER_NAME = "inbox_ledger"
_LEVEL_ENV = "INBOX_LEDGER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"

# Client libraries that log every request (URLs, query strings) at INFO.
# They are held at WARNING unless the CLI runs at DEBUG.
THIRD_PARTY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "openai",
    "google_auth_oauthlib",
    "requests_oauthlib",
    "oauthlib",
    "urllib3",
)

_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1***"),
    (
        re.compile(
            r"(\b(?:access_token|refresh_token|code|client_secret)[\"']?\s*[=:]\s*[\"']?)"
            r"[^\s&\"',}]+"
        ),
        r"\1***",
    ),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), "sk-***"),
)

_CONFIGURED = False


class RedactSecrets(logging.Filter):
    """Mask credentials in the fully formatted message of a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def redact(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(_LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    # Unknown names resolve to INFO.
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
    force: bool = False,
) -> None:
    """Configure the package root logger once per process.

    ``level`` falls back to ``INBOX_LEDGER_LOG_LEVEL`` and then ``INFO``.
    Third-party client loggers are capped at ``WARNING`` unless ``level``
    resolves to ``DEBUG`` or lower. ``force=True`` replaces an earlier
    configuration.
    """

    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler) or getattr(h, "_inbox_ledger", False):
            logger.removeHandler(h)

    resolved = _resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler._inbox_ledger = True  # type: ignore[attr-defined]
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    handler.addFilter(RedactSecrets())

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    third_party_level = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, attaching a ``NullHandler`` to the package
    root when logging has not been configured."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
