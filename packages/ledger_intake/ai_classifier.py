"""AI classification stage (OpenAI Responses API).

Public API:
    - :class:`AiClassificationRequest`
    - :func:`classify_with_ai`

The call never raises for service problems. It returns a tagged outcome:

- :class:`~ledger_intake.models.AiMatched` for a usable suggestion (the
  pipeline applies the confidence gates);
- :class:`~ledger_intake.models.AiNoMatch` when the model returns the
  ``UNCLASSIFIED_REVIEW_REQUIRED`` sentinel, an unknown category, or fewer than
  two supporting signals;
- :class:`~ledger_intake.models.AiServiceUnavailable` when no API key is set,
  retries are exhausted, or the response cannot be decoded.

No side effects occur at import time.
"""

from __future__ import annotations

import json
import os
import random
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from openai import APIConnectionError, OpenAI
from openai.types.responses import ResponseTextConfigParam
from pydantic import BaseModel, ValidationError

from . import prompting
from .logging_setup import get_logger
from .models import AiMatched, AiNoMatch, AiOutcome, AiServiceUnavailable, CategoryInfo
from .settings import IntakeSettings

# ---- Tunables (private) ------------------------------------------------------

_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20
_MIN_SIGNALS: int = 2

_logger = get_logger("ledger_intake.ai_classifier")


@dataclass(frozen=True, slots=True)
class AiClassificationRequest:
    description: str
    direction: str
    amount: Decimal
    reference: str | None
    allowed_categories: Sequence[CategoryInfo]
    # Prior same-description rows, newest first: {date, amount, category_code}.
    history: Sequence[Mapping[str, Any]] = field(default_factory=tuple)


class _AiResponse(BaseModel):
    category_code: str
    confidence: float
    signals: list[str]
    explanation: str


# ---- Internal helpers --------------------------------------------------------


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from an OpenAI Responses SDK result.

    Prefer ``resp.output_text``; fall back to ``resp.output[0].content[0].text``.
    Raise ``ValueError`` when no text is found or it is not JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        content = getattr(output[0], "content", None) if output else None
        if content:
            txt_obj = getattr(content[0], "text", None)
            if isinstance(txt_obj, str):
                text = txt_obj
            else:
                maybe_val = getattr(txt_obj, "value", None)
                if isinstance(maybe_val, str):
                    text = maybe_val
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output was not a JSON object")
    return decoded


def _create_client(settings: IntakeSettings) -> OpenAI:
    # Retries are handled here, not by the SDK.
    return OpenAI(timeout=settings.ai_timeout_sec, max_retries=0)


def _is_retryable(exc: BaseException) -> bool:
    """Return True for timeouts, connection errors, HTTP 429 and 5xx."""

    if isinstance(exc, APIConnectionError):
        return True
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    delay = base + random.uniform(-jitter, jitter)
    time.sleep(max(0.0, delay))


def _interpret(decoded: Mapping[str, Any], allowed: set[str]) -> AiOutcome:
    try:
        parsed = _AiResponse.model_validate(decoded)
    except ValidationError as e:
        return AiServiceUnavailable(error=f"invalid response payload: {e.error_count()} errors")

    code = parsed.category_code.strip()
    if code == prompting.UNCLASSIFIED_SENTINEL:
        return AiNoMatch(reason="model returned unclassified sentinel")
    if code not in allowed:
        return AiNoMatch(reason=f"unknown category {code!r}")
    signals = tuple(s.strip() for s in parsed.signals if s and s.strip())
    if len(signals) < _MIN_SIGNALS:
        return AiNoMatch(reason=f"insufficient signals ({len(signals)})")
    confidence = min(1.0, max(0.0, float(parsed.confidence)))
    return AiMatched(
        category_code=code,
        confidence=confidence,
        explanation=parsed.explanation.strip(),
        signals=signals,
    )


# ---- Public API --------------------------------------------------------------


def classify_with_ai(request: AiClassificationRequest, *, settings: IntakeSettings) -> AiOutcome:
    """Ask the model for a category; see the module docstring for outcomes."""

    if not os.getenv("OPENAI_API_KEY"):
        return AiServiceUnavailable(error="OPENAI_API_KEY is not set")
    if not request.allowed_categories:
        return AiNoMatch(reason="no categories available")

    allowed = {c.code for c in request.allowed_categories}
    user_content = prompting.build_user_content(
        {
            "description": request.description,
            "direction": request.direction,
            "amount": str(request.amount),
            "reference": request.reference,
        },
        categories=request.allowed_categories,
        history=request.history,
    )
    text_cfg = ResponseTextConfigParam(
        format=prompting.build_response_format(request.allowed_categories),
    )

    client = _create_client(settings)
    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            resp = client.responses.create(
                model=settings.openai_model,
                instructions=prompting.build_system_instructions(),
                input=user_content,
                text=text_cfg,
            )
            decoded = _extract_response_json_mapping(resp)
        except Exception as e:  # noqa: BLE001 - every failure degrades to review
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= settings.ai_max_attempts or not _is_retryable(e):
                _logger.error(
                    "ai_classifier:failed_terminal attempt=%d latency_ms=%.2f error=%s",
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                return AiServiceUnavailable(error=f"{e.__class__.__name__}: {e}")
            _logger.warning(
                "ai_classifier:retry attempt=%d latency_ms=%.2f error=%s",
                attempt,
                dt_ms,
                e.__class__.__name__,
            )
            _sleep_backoff(attempt)
            attempt += 1
            continue

        outcome = _interpret(decoded, allowed)
        _logger.info(
            "ai_classifier:done outcome=%s latency_ms=%.2f",
            type(outcome).__name__,
            (time.perf_counter() - t0) * 1000.0,
        )
        return outcome


__all__ = ["AiClassificationRequest", "classify_with_ai"]
