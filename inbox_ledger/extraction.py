"""Single-alert transaction extraction via the OpenAI Responses API.

Public API:
    - :func:`extract_transaction`

Any failure (blank input, provider/network error, missing output text,
malformed JSON, fields outside the schema) raises
:class:`~inbox_ledger.errors.ExtractionFailure`. There is no retry here; the
sync loop decides what a failure means. Output is not deterministic across
calls, so callers should rely on the shape, not the content.
"""

from __future__ import annotations

import json
import time
from typing import Any

import openai
from openai import OpenAI
from pydantic import ValidationError

from . import prompting
from .errors import ExtractionFailure
from .logging_setup import get_logger
from .models import ExtractedTransaction, Transaction

DEFAULT_MODEL: str = "gpt-5-mini"

_logger = get_logger("inbox_ledger.extraction")


def _create_client() -> OpenAI:
    return OpenAI()


def _extract_response_text(resp: Any) -> str | None:
    """Locate the text output of a Responses SDK result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``
    (or its ``.value``) for SDK shape differences.
    """

    text: str | None = getattr(resp, "output_text", None)
    if text:
        return text
    output = getattr(resp, "output", None)
    if not output:
        return None
    content = getattr(output[0], "content", None)
    if not content:
        return None
    txt_obj = getattr(content[0], "text", None)
    if isinstance(txt_obj, str):
        return txt_obj
    maybe_val = getattr(txt_obj, "value", None)
    return maybe_val if isinstance(maybe_val, str) else None


def parse_extraction_output(text: str | None) -> ExtractedTransaction:
    """Validate raw model output into an :class:`ExtractedTransaction`.

    Raises ``ExtractionFailure`` when the text is empty, is not a JSON object,
    or does not carry the required fields with valid values.
    """

    if not text or not text.strip():
        raise ExtractionFailure("model returned no output text")
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionFailure("model output was not valid JSON") from e
    if not isinstance(decoded, dict):
        raise ExtractionFailure("model output was not a JSON object")
    try:
        return ExtractedTransaction.model_validate(decoded)
    except ValidationError as e:
        raise ExtractionFailure(
            f"model output did not match the transaction schema: {e.error_count()} error(s)"
        ) from e


def extract_transaction(
    text: str,
    *,
    client: OpenAI | None = None,
    model: str | None = None,
) -> Transaction:
    """Extract one :class:`Transaction` from free-form alert text.

    A fresh ``id`` is stamped on success. ``client`` defaults to a new
    ``OpenAI()`` (reads ``OPENAI_API_KEY``); ``model`` defaults to
    :data:`DEFAULT_MODEL`.
    """

    if not text or not text.strip():
        raise ExtractionFailure("alert text is empty")

    t0 = time.perf_counter()
    try:
        client = client or _create_client()
        resp = client.responses.create(
            model=model or DEFAULT_MODEL,
            instructions=prompting.build_system_instructions(),
            input=prompting.build_user_content(text.strip()),
            text={"format": prompting.build_response_format()},
        )
    except openai.OpenAIError as e:
        _logger.warning(
            "extract:provider_error latency_ms=%.2f error=%s",
            (time.perf_counter() - t0) * 1000.0,
            e.__class__.__name__,
        )
        raise ExtractionFailure(f"model call failed: {e}") from e

    extracted = parse_extraction_output(_extract_response_text(resp))
    tx = Transaction.from_extracted(extracted)
    _logger.debug(
        "extract:done id=%s type=%s category=%s latency_ms=%.2f",
        tx.id,
        tx.type,
        tx.category,
        (time.perf_counter() - t0) * 1000.0,
    )
    return tx
