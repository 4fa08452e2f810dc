# ruff: noqa: I001
from __future__ import annotations

from typing import Any

import pytest

from db.client import session_scope
from db.models.finance import AcctRawTransaction, AcctUploadedFile
from sqlalchemy import func, select

import ledger_intake.ai_classifier as ai_classifier_mod
from ledger_intake import api
from ledger_intake.errors import IngestValidationError
from ledger_intake.ingest.adapters.ai_extraction import ExtractionResult
from ledger_intake.models import AiMatched, AiNoMatch
from ledger_intake.settings import IntakeSettings

from tests.helpers.openai_stub import answer, make_openai_stub

_HEADER = "date,amount,direction,description,reference\n"
_SERIAL = IntakeSettings(classify_concurrency=1)


# ---- Helpers -----------------------------------------------------------------


class _RecordingAi:
    """Stand-in for the AI stage returning queued outcomes (then no match)."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[Any] = []

    def __call__(self, request):
        self.requests.append(request)
        if self.outcomes:
            return self.outcomes.pop(0)
        return AiNoMatch(reason="no opinion")


def _count(db_url: str, model) -> int:
    with session_scope(database_url=db_url) as s:
        return s.execute(select(func.count()).select_from(model)).scalar_one()


# ---- Flows -------------------------------------------------------------------


def test_rule_hit_and_idempotent_reupload(db_url: str, entity_id: int) -> None:
    content = (_HEADER + "2024-06-01,1500.00,debit,ZOMATO ORDER 1234,REF998877\n").encode()
    ai = _RecordingAi()

    first = api.ingest_csv_upload(
        content,
        entity_id=entity_id,
        original_name="june.csv",
        database_url=db_url,
        settings=_SERIAL,
        ai_classifier=ai,
    )

    (row,) = first.rows
    d = row.decision
    assert (d.category_code, d.method, d.confidence, d.status) == (
        "FOOD_DINING",
        "rule",
        0.85,
        "confirmed",
    )
    assert ai.requests == []
    (item,) = api.list_review_queue(entity_id=entity_id, status="confirmed", database_url=db_url)
    assert item.reference_extracted == "REF998877"
    assert item.uploaded_file_id == first.uploaded_file_id

    again = api.ingest_csv_upload(
        content, entity_id=entity_id, original_name="renamed.csv", database_url=db_url
    )
    assert again.was_existing is True
    assert again.uploaded_file_id == first.uploaded_file_id
    assert again.raw_count == 1
    assert _count(db_url, AcctRawTransaction) == 1


def test_override_learning_across_uploads(db_url: str, entity_id: int) -> None:
    ai = _RecordingAi()
    first = api.ingest_csv_upload(
        (_HEADER + "2024-06-01,85000.00,credit,ACME CORP SALARY,\n").encode(),
        entity_id=entity_id,
        database_url=db_url,
        settings=_SERIAL,
        ai_classifier=ai,
    )
    (row,) = first.rows
    assert row.decision.method == "uncategorized"
    assert len(ai.requests) == 1

    api.apply_override(
        entity_id=entity_id,
        normalized_id=row.normalized_transaction_id,
        category_code="SALARY_INCOME",
        actor="user-1",
        database_url=db_url,
    )
    assert api.commit_upload(
        entity_id=entity_id, uploaded_file_id=first.uploaded_file_id, database_url=db_url
    ).committed

    second = api.ingest_csv_upload(
        (_HEADER + "2024-07-01,85000.00,credit,ACME CORP SALARY,\n").encode(),
        entity_id=entity_id,
        database_url=db_url,
        settings=_SERIAL,
        ai_classifier=ai,
    )

    (row2,) = second.rows
    d = row2.decision
    assert (d.category_code, d.method, d.confidence, d.status) == (
        "SALARY_INCOME",
        "manual",
        1.0,
        "confirmed",
    )
    assert len(ai.requests) == 1
    assert api.commit_upload(
        entity_id=entity_id, uploaded_file_id=second.uploaded_file_id, database_url=db_url
    ).committed


def test_rows_of_one_batch_do_not_feed_each_other(db_url: str, entity_id: int) -> None:
    ai = _RecordingAi(
        AiMatched(category_code="BUSINESS_EXPENSE", confidence=0.9, explanation="supplier")
    )
    content = (
        _HEADER
        + "2024-06-01,300.00,debit,PRINTWORKS LLP,\n"
        + "2024-06-02,300.00,debit,PRINTWORKS LLP,\n"
    ).encode()

    result = api.ingest_csv_upload(
        content, entity_id=entity_id, database_url=db_url, settings=_SERIAL, ai_classifier=ai
    )

    methods = [r.decision.method for r in result.rows]
    assert methods == ["ai", "uncategorized"]
    assert result.needs_review_count == 1


def test_openai_backed_classification(
    db_url: str, entity_id: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    def decide(payload: dict[str, Any]) -> dict[str, Any]:
        desc = payload["transaction"]["description"].upper()
        if "NETFLIX" in desc:
            return answer("SUBSCRIPTION_EXPENSE", 0.92, explanation="streaming subscription")
        if "LIC" in desc:
            return answer("LOAN_REPAYMENT", 0.65, explanation="possible policy premium")
        return answer("UNCLASSIFIED_REVIEW_REQUIRED", 0.1)

    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(ai_classifier_mod, "OpenAI", make_openai_stub(decide, calls))
    content = (
        _HEADER
        + "2024-06-05,649.00,debit,NETFLIX.COM,\n"
        + "2024-06-06,5000.00,debit,LIC PREMIUM,\n"
        + "2024-06-07,12.00,debit,UNKNOWN MERCHANT,\n"
    ).encode()

    result = api.ingest_csv_upload(
        content,
        entity_id=entity_id,
        database_url=db_url,
        settings=IntakeSettings(classify_concurrency=3),
    )

    got = [(r.decision.category_code, r.decision.method, r.decision.status) for r in result.rows]
    assert got == [
        ("SUBSCRIPTION_EXPENSE", "ai", "confirmed"),
        ("LOAN_REPAYMENT", "ai", "needs_review"),
        (None, "uncategorized", "needs_review"),
    ]
    assert result.rows[0].decision.explanation == "AI suggestion: streaming subscription"
    assert len(calls) == 3


def test_invalid_csv_writes_nothing(db_url: str, entity_id: int) -> None:
    content = (_HEADER + "2024-06-01,1,debit,OK,\n2024-06-02,x,debit,BAD,\n").encode()

    with pytest.raises(IngestValidationError, match="Row 3"):
        api.ingest_csv_upload(content, entity_id=entity_id, database_url=db_url)

    assert _count(db_url, AcctUploadedFile) == 0
    assert _count(db_url, AcctRawTransaction) == 0


def test_document_upload_dedups_before_extraction(db_url: str, entity_id: int) -> None:
    extract_calls: list[bytes] = []

    def extract(content: bytes) -> ExtractionResult:
        extract_calls.append(content)
        return ExtractionResult.model_validate(
            {
                "transactions": [
                    {
                        "date": "2024-06-09",
                        "amount": 420,
                        "direction": "expense",
                        "description": "Cab ride",
                        "merchant": "Uber",
                    }
                ],
                "metadata": {"document_type": "receipt"},
            }
        )

    first = api.ingest_document_upload(
        b"%PDF-1.4 receipt",
        entity_id=entity_id,
        extract=extract,
        original_name="receipt.pdf",
        mime_type="application/pdf",
        database_url=db_url,
        settings=_SERIAL,
        ai_classifier=_RecordingAi(),
    )
    again = api.ingest_document_upload(
        b"%PDF-1.4 receipt", entity_id=entity_id, extract=extract, database_url=db_url
    )

    (row,) = first.rows
    assert row.decision.category_code == "TRAVEL_TRANSPORT"
    assert again.was_existing is True
    assert again.raw_count == 1
    assert len(extract_calls) == 1
    (upload,) = api.list_uploads(entity_id=entity_id, database_url=db_url)
    assert upload["source_type"] == "cash"


def test_manual_entry_is_classified(db_url: str, entity_id: int) -> None:
    from ledger_intake.models import CandidateTransaction

    result = api.ingest_manual_entry(
        CandidateTransaction(date="2024-06-11", amount="-18000", description="JUNE RENT"),
        entity_id=entity_id,
        database_url=db_url,
        settings=_SERIAL,
        ai_classifier=_RecordingAi(),
    )

    assert result.uploaded_file_id is None
    (row,) = result.rows
    assert (row.decision.category_code, row.decision.method) == ("RENT", "rule")
