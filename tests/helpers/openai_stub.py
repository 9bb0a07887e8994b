"""Test helper stubbing the OpenAI Responses client used by ``extraction.py``.

The stub pulls the alert text out of the user content (between the
``BEGIN_ALERT_TEXT`` / ``END_ALERT_TEXT`` markers) and hands it to a
``respond`` callable. ``respond`` returns either a mapping (serialized to JSON
as the model's output text), a raw string (used verbatim, e.g. to simulate
malformed output), or raises to simulate a provider error.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

BEGIN = "BEGIN_ALERT_TEXT\n"
END = "\nEND_ALERT_TEXT"


def extract_alert_text(user_content: str) -> str:
    b = user_content.find(BEGIN)
    e = user_content.rfind(END)
    if b == -1 or e == -1 or e < b:
        raise AssertionError("extraction: user content missing delimited alert text")
    return user_content[b + len(BEGIN) : e]


def debit(**overrides: Any) -> dict[str, Any]:
    """A valid model output for a card purchase, with optional overrides."""

    out: dict[str, Any] = {
        "amount": 450.0,
        "merchant": "Swiggy",
        "date": "2025-03-14",
        "category": "Food & Dining",
        "type": "DEBIT",
        "description": "Food order",
    }
    out.update(overrides)
    return out


class _Resp:
    def __init__(self, text: str | None) -> None:
        self.output_text = text


class OpenAIStub:
    """Minimal stand-in for ``openai.OpenAI`` exposing ``responses.create``."""

    def __init__(
        self,
        respond: Callable[[str], Mapping[str, Any] | str | None],
        calls_out: list[dict[str, Any]] | None = None,
    ) -> None:
        self._respond = respond
        self._calls = calls_out if calls_out is not None else []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Resp:
                self._outer._calls.append(kwargs)
                out = self._outer._respond(extract_alert_text(kwargs["input"]))
                if out is None or isinstance(out, str):
                    return _Resp(out)
                return _Resp(json.dumps(out))

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls

    @property
    def alert_texts(self) -> list[str]:
        return [extract_alert_text(c["input"]) for c in self._calls]
