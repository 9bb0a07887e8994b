"""Runtime configuration resolved from the environment and the data directory.

Environment variables (a local ``.env`` is loaded by the CLI first):

- ``INBOX_LEDGER_DATA_DIR``: ledger/config/token directory (default
  ``./.inbox_ledger``).
- ``GMAIL_CLIENT_ID`` / ``GMAIL_CLIENT_SECRET``: OAuth client for mailbox
  access. A client id saved with ``set-client-id`` takes precedence.
- ``INBOX_LEDGER_MODEL``: model used for extraction.
- ``INBOX_LEDGER_QUERY``: mailbox search filter for alert messages.
- ``INBOX_LEDGER_MAX_RESULTS``: listing cap per sync (1..100, default 15).
- ``INBOX_LEDGER_AUTH_TIMEOUT``: seconds to wait for mailbox consent.
- ``OPENAI_API_KEY``: read by the OpenAI SDK directly.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .extraction import DEFAULT_MODEL
from .logging_setup import get_logger
from .mailbox import DEFAULT_MAX_RESULTS, DEFAULT_QUERY, delete_token

CONFIG_FILE = "config.json"
TOKEN_FILE = "token.json"

_logger = get_logger("inbox_ledger.settings")


@dataclass(frozen=True, slots=True)
class Settings:
    data_dir: Path
    client_id: str | None
    client_secret: str | None
    model: str
    query: str
    max_results: int
    auth_timeout: float

    @property
    def token_path(self) -> Path:
        return self.data_dir / TOKEN_FILE

    @property
    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILE


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    # Bundlers and shells sometimes stringify a missing value.
    if not value or value == "undefined":
        return None
    return value


def _int_env(env: Mapping[str, str], name: str, default: int, *, lo: int, hi: int) -> int:
    raw = _clean(env.get(name))
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        _logger.warning("settings:invalid_int name=%s value=%r", name, raw)
        return default
    return max(lo, min(value, hi))


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _clean(env.get(name))
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        _logger.warning("settings:invalid_float name=%s value=%r", name, raw)
        return default
    return value if value > 0 else default


def resolve_data_dir(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    raw = _clean(env.get("INBOX_LEDGER_DATA_DIR"))
    if raw:
        return Path(raw).expanduser().resolve()
    return (Path.cwd() / ".inbox_ledger").resolve()


def read_saved_client_id(data_dir: Path) -> str | None:
    path = data_dir / CONFIG_FILE
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        _logger.warning("settings:config_unreadable path=%s", os.fspath(path))
        return None
    if not isinstance(data, dict):
        return None
    value = data.get("client_id")
    return _clean(value) if isinstance(value, str) else None


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env
    data_dir = resolve_data_dir(env)
    return Settings(
        data_dir=data_dir,
        client_id=read_saved_client_id(data_dir) or _clean(env.get("GMAIL_CLIENT_ID")),
        client_secret=_clean(env.get("GMAIL_CLIENT_SECRET")),
        model=_clean(env.get("INBOX_LEDGER_MODEL")) or DEFAULT_MODEL,
        query=_clean(env.get("INBOX_LEDGER_QUERY")) or DEFAULT_QUERY,
        max_results=_int_env(env, "INBOX_LEDGER_MAX_RESULTS", DEFAULT_MAX_RESULTS, lo=1, hi=100),
        auth_timeout=_float_env(env, "INBOX_LEDGER_AUTH_TIMEOUT", 120.0),
    )


def save_client_id(data_dir: Path, client_id: str) -> str:
    """Persist ``client_id`` and drop any stored token.

    A token granted to a different client cannot be reused, so changing the
    client id always forces a fresh consent.
    """

    value = _clean(client_id)
    if value is None:
        raise ValueError("client id must be non-empty")
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / CONFIG_FILE
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps({"client_id": value}), encoding="utf-8")
    os.replace(tmp, path)
    delete_token(data_dir / TOKEN_FILE)
    _logger.info("settings:client_id_saved")
    return value


def clear_local_config(data_dir: Path) -> None:
    """Remove the saved client id and token."""

    for name in (CONFIG_FILE, TOKEN_FILE):
        try:
            (data_dir / name).unlink()
        except FileNotFoundError:
            continue
