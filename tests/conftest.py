"""Pytest configuration for test isolation.

The ledger, saved client id, and access token live under a data directory
that defaults to ``./.inbox_ledger``. Each test gets its own directory via
``INBOX_LEDGER_DATA_DIR`` so no on-disk state leaks between tests, and the
mailbox/OpenAI environment variables are cleared so a developer's ``.env``
cannot change behavior.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

_ENV_VARS = (
    "GMAIL_CLIENT_ID",
    "GMAIL_CLIENT_SECRET",
    "INBOX_LEDGER_MODEL",
    "INBOX_LEDGER_QUERY",
    "INBOX_LEDGER_MAX_RESULTS",
    "INBOX_LEDGER_AUTH_TIMEOUT",
    "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "data"
    root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("INBOX_LEDGER_DATA_DIR", os.fspath(root))
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return root
