"""Prompt construction for the AI classification stage.

This module builds:
- The system instructions (conservative, evidence-first).
- The user content: one transaction plus its same-description history,
  serialized as JSON between ``BEGIN_TRANSACTION_JSON`` / ``END_TRANSACTION_JSON``
  markers.
- The strict ``response_format`` (JSON Schema) for the OpenAI Responses API,
  whose ``category_code`` enum is the allowed categories plus the
  ``UNCLASSIFIED_REVIEW_REQUIRED`` sentinel.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .models import CategoryInfo

UNCLASSIFIED_SENTINEL = "UNCLASSIFIED_REVIEW_REQUIRED"

BEGIN = "BEGIN_TRANSACTION_JSON\n"
END = "\nEND_TRANSACTION_JSON"


def build_system_instructions() -> str:
    """Return the system instructions for single-transaction classification."""

    return (
        "You are a conservative chartered accountant classifying one bank transaction "
        "into an accounting category. Use only the categories provided. Base the decision "
        "on concrete evidence: merchant or counterparty names, payment rails and reference "
        "formats, direction of money, amount patterns and the user's own history for the "
        "same description. List each independent piece of evidence in `signals`. "
        "If you cannot cite at least 2 strong signals, return "
        f"{UNCLASSIFIED_SENTINEL} as the category_code with a low confidence. "
        "Never treat transfers, refunds or loan movements as income or expense unless the "
        "evidence is explicit. Output JSON only that conforms to the specified schema."
    )


def summarize_history(history: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Summarize prior same-description rows for the prompt.

    ``stable_amount`` is true when there are at least two prior amounts and
    their spread is within 5% of the largest.
    """

    amounts = [float(h["amount"]) for h in history if h.get("amount") is not None]
    stable = False
    if len(amounts) >= 2 and max(amounts) > 0:
        stable = (max(amounts) - min(amounts)) / max(amounts) <= 0.05
    return {"occurrences": len(history), "stable_amount": stable, "recent": list(history)}


def build_user_content(
    transaction: Mapping[str, Any],
    *,
    categories: Sequence[CategoryInfo],
    history: Sequence[Mapping[str, Any]],
) -> str:
    """Embed the allowed categories and the transaction payload for the model."""

    lines = ["Allowed categories (code: name [ledger type]):"]
    for c in categories:
        lines.append(f"- {c.code}: {c.name} [{c.ledger_type}]")
    payload = {
        "transaction": dict(transaction),
        "history": summarize_history(history),
    }
    body = json.dumps(payload, ensure_ascii=False, default=str)
    return "\n".join(lines) + "\n\n" + BEGIN + body + END


def build_response_format(
    categories: Sequence[CategoryInfo],
) -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema response_format object.

    Schema shape::

        {"category_code": <enum>, "confidence": number in [0, 1],
         "signals": [string], "explanation": string}
    """

    codes = [c for c in dict.fromkeys(cat.code for cat in categories) if c]
    if not codes:
        raise ValueError("categories must contain at least one code")

    result: ResponseFormatTextJSONSchemaConfigParam = {
        "type": "json_schema",
        "name": "transaction_category",
        "schema": {
            "type": "object",
            "properties": {
                "category_code": {"type": "string", "enum": codes + [UNCLASSIFIED_SENTINEL]},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "signals": {"type": "array", "items": {"type": "string"}},
                "explanation": {"type": "string"},
            },
            "required": ["category_code", "confidence", "signals", "explanation"],
            "additionalProperties": False,
        },
        "strict": True,
    }
    return result


__all__ = [
    "BEGIN",
    "END",
    "UNCLASSIFIED_SENTINEL",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
    "summarize_history",
]
