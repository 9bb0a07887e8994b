"""Prompt construction for single-alert transaction extraction.

This module builds:
- The system instructions for the extraction task.
- The user content embedding the raw alert text between delimiters.
- The strict ``text.format`` (JSON Schema) object for the OpenAI Responses
  API, enumerating the allowed ``type`` and ``category`` values.
"""

from __future__ import annotations

from collections.abc import Sequence

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .models import ALLOWED_CATEGORIES, TransactionType

BEGIN_ALERT = "BEGIN_ALERT_TEXT\n"
END_ALERT = "\nEND_ALERT_TEXT"

EXTRACTION_FIELDS: tuple[str, ...] = (
    "amount",
    "merchant",
    "date",
    "category",
    "type",
    "description",
)


def build_system_instructions() -> str:
    return (
        "You extract exactly one financial transaction from a bank alert notification. "
        "Never invent values that are not supported by the alert. Output JSON only that "
        "conforms to the specified schema."
    )


def build_user_content(
    alert_text: str,
    *,
    allowed_categories: Sequence[str] = ALLOWED_CATEGORIES,
) -> str:
    """Build the user content for one alert.

    The alert is embedded verbatim between ``BEGIN_ALERT_TEXT`` and
    ``END_ALERT_TEXT`` markers so it cannot be confused with instructions.
    """

    categories = ", ".join(allowed_categories)
    return (
        "Extract the transaction details from this bank alert text.\n"
        "- If money came into the account (refund, salary, transfer received), set "
        'type to "CREDIT" and category to "Income".\n'
        '- Otherwise set type to "DEBIT" and choose the best-fitting category.\n'
        f"- Allowed categories: {categories}.\n"
        "- amount is the absolute value of the transaction as a number, without "
        "currency symbols or sign.\n"
        "- date is the transaction date stated in the alert, formatted YYYY-MM-DD.\n"
        "- merchant is the store, person, or service on the other side, or an "
        "empty string when the alert names none (for example a cash withdrawal).\n"
        "- description is a short summary of what the transaction was.\n\n"
        f"{BEGIN_ALERT}{alert_text}{END_ALERT}"
    )


def build_response_format(
    allowed_categories: Sequence[str] = ALLOWED_CATEGORIES,
) -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema format object for one transaction.

    Schema shape:
    {
      "type": "json_schema",
      "name": "bank_alert_transaction",
      "schema": {
        "type": "object",
        "properties": {
          "amount": {"type": "number"},
          "merchant": {"type": "string"},
          "date": {"type": "string"},
          "category": {"type": "string", "enum": [...]},
          "type": {"type": "string", "enum": ["DEBIT", "CREDIT"]},
          "description": {"type": "string"}
        },
        "required": [...all six...],
        "additionalProperties": false
      },
      "strict": true
    }
    """

    codes = [c for c in dict.fromkeys(s.strip() for s in allowed_categories) if c]
    if not codes:
        raise ValueError("allowed_categories must contain at least one non-blank value")

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "bank_alert_transaction",
        "schema": {
            "type": "object",
            "properties": {
                "amount": {
                    "type": "number",
                    "description": "The numeric amount of the transaction.",
                },
                "merchant": {
                    "type": "string",
                    "description": "The name of the store, restaurant, person or service.",
                },
                "date": {
                    "type": "string",
                    "description": "The date of the transaction in YYYY-MM-DD format.",
                },
                "category": {"type": "string", "enum": codes},
                "type": {"type": "string", "enum": [t.value for t in TransactionType]},
                "description": {
                    "type": "string",
                    "description": "A short summary of what was purchased or received.",
                },
            },
            "required": list(EXTRACTION_FIELDS),
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result
