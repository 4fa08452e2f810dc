# ruff: noqa: I001
from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx
import pytest
from openai import APIConnectionError

import ledger_intake.ai_classifier as ai_classifier_mod
from ledger_intake.ai_classifier import AiClassificationRequest, classify_with_ai
from ledger_intake.categories import DEFAULT_CATEGORIES
from ledger_intake.models import AiMatched, AiNoMatch, AiServiceUnavailable, CategoryInfo
from ledger_intake.prompting import UNCLASSIFIED_SENTINEL
from ledger_intake.settings import IntakeSettings

from tests.helpers.openai_stub import StatusError, answer, make_openai_stub

_CATEGORIES = tuple(CategoryInfo(*c) for c in DEFAULT_CATEGORIES)
_SETTINGS = IntakeSettings(ai_max_attempts=3)


# ---- Helpers -----------------------------------------------------------------


def _request(**overrides: Any) -> AiClassificationRequest:
    fields: dict[str, Any] = {
        "description": "NETFLIX.COM MUMBAI",
        "direction": "outflow",
        "amount": Decimal("649.00"),
        "reference": None,
        "allowed_categories": _CATEGORIES,
        "history": ({"date": "2024-05-01", "amount": Decimal("649.00"), "category_code": None},),
    }
    fields.update(overrides)
    return AiClassificationRequest(**fields)


def _install(monkeypatch: pytest.MonkeyPatch, decide) -> list[dict[str, Any]]:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(ai_classifier_mod, "OpenAI", make_openai_stub(decide, calls))
    return calls


# ---- Outcomes ----------------------------------------------------------------


def test_usable_answer_is_matched(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch, lambda payload: answer("SUBSCRIPTION_EXPENSE", 0.91, explanation="OTT")
    )

    out = classify_with_ai(_request(), settings=_SETTINGS)

    assert out == AiMatched(
        category_code="SUBSCRIPTION_EXPENSE",
        confidence=0.91,
        explanation="OTT",
        signals=("merchant name", "payment rail"),
    )
    (call,) = calls
    assert call["model"] == _SETTINGS.openai_model
    assert UNCLASSIFIED_SENTINEL in call["instructions"]
    enum = call["text"]["format"]["schema"]["properties"]["category_code"]["enum"]
    assert enum[-1] == UNCLASSIFIED_SENTINEL
    assert "FOOD_DINING" in enum


def test_prompt_embeds_transaction_and_history(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[dict[str, Any]] = []

    def decide(payload: dict[str, Any]) -> dict[str, Any]:
        seen.append(payload)
        return answer("SUBSCRIPTION_EXPENSE", 0.9)

    _install(monkeypatch, decide)
    history = (
        {"date": "2024-05-01", "amount": Decimal("649.00"), "category_code": None},
        {"date": "2024-04-01", "amount": Decimal("649.00"), "category_code": None},
    )

    classify_with_ai(_request(history=history), settings=_SETTINGS)

    (payload,) = seen
    assert payload["transaction"] == {
        "description": "NETFLIX.COM MUMBAI",
        "direction": "outflow",
        "amount": "649.00",
        "reference": None,
    }
    assert payload["history"]["occurrences"] == 2
    assert payload["history"]["stable_amount"] is True


def test_confidence_is_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, lambda payload: answer("SUBSCRIPTION_EXPENSE", 1.7))

    out = classify_with_ai(_request(), settings=_SETTINGS)

    assert isinstance(out, AiMatched) and out.confidence == 1.0


@pytest.mark.parametrize(
    "response",
    [
        answer(UNCLASSIFIED_SENTINEL, 0.2),
        answer("GROCERIES", 0.95),
        answer("SUBSCRIPTION_EXPENSE", 0.95, signals=("merchant name",)),
        answer("SUBSCRIPTION_EXPENSE", 0.95, signals=("merchant name", "   ")),
    ],
)
def test_unusable_answers_are_no_match(
    monkeypatch: pytest.MonkeyPatch, response: dict[str, Any]
) -> None:
    _install(monkeypatch, lambda payload: response)

    assert isinstance(classify_with_ai(_request(), settings=_SETTINGS), AiNoMatch)


def test_malformed_payload_is_service_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, lambda payload: {"category": "FOOD_DINING"})

    assert isinstance(classify_with_ai(_request(), settings=_SETTINGS), AiServiceUnavailable)


def test_missing_api_key_skips_the_call(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(monkeypatch, lambda payload: answer("FOOD_DINING", 0.9))
    monkeypatch.delenv("OPENAI_API_KEY")

    out = classify_with_ai(_request(), settings=_SETTINGS)

    assert out == AiServiceUnavailable(error="OPENAI_API_KEY is not set")
    assert calls == []


# ---- Retries -----------------------------------------------------------------


def test_retries_transient_errors_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    failures = [StatusError(503), StatusError(429)]

    def decide(payload: dict[str, Any]) -> dict[str, Any]:
        if failures:
            raise failures.pop(0)
        return answer("SUBSCRIPTION_EXPENSE", 0.9)

    sleeps: list[int] = []
    calls = _install(monkeypatch, decide)
    monkeypatch.setattr(ai_classifier_mod, "_sleep_backoff", sleeps.append)

    out = classify_with_ai(_request(), settings=_SETTINGS)

    assert isinstance(out, AiMatched)
    assert len(calls) == 3
    assert sleeps == [1, 2]


def test_exhausted_retries_are_service_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def decide(payload: dict[str, Any]) -> dict[str, Any]:
        raise StatusError(500)

    calls = _install(monkeypatch, decide)

    out = classify_with_ai(_request(), settings=_SETTINGS)

    assert isinstance(out, AiServiceUnavailable)
    assert "HTTP 500" in out.error
    assert len(calls) == _SETTINGS.ai_max_attempts


def test_non_retryable_error_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    def decide(payload: dict[str, Any]) -> dict[str, Any]:
        raise StatusError(400)

    calls = _install(monkeypatch, decide)

    assert isinstance(classify_with_ai(_request(), settings=_SETTINGS), AiServiceUnavailable)
    assert len(calls) == 1


def test_retryable_classification() -> None:
    conn_err = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))

    assert ai_classifier_mod._is_retryable(conn_err)
    assert ai_classifier_mod._is_retryable(StatusError(429))
    assert ai_classifier_mod._is_retryable(StatusError(502))
    assert not ai_classifier_mod._is_retryable(StatusError(404))
    assert not ai_classifier_mod._is_retryable(ValueError("bad json"))


def test_client_disables_sdk_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    class _Client:
        def __init__(self, *a: Any, **kw: Any) -> None:
            captured.update(kw)

    monkeypatch.setattr(ai_classifier_mod, "OpenAI", _Client)

    ai_classifier_mod._create_client(IntakeSettings(ai_timeout_sec=12.5))

    assert captured == {"timeout": 12.5, "max_retries": 0}
