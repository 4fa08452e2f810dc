from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from ledger_intake.errors import IngestValidationError
from ledger_intake.ingest.adapters.ai_extraction import (
    ExtractionResult,
    extraction_to_candidates,
    source_type_for,
)


@pytest.mark.parametrize(
    ("doc_type", "expected"),
    [
        ("statement", "bank"),
        ("Invoice", "card"),
        ("receipt", "cash"),
        ("memo", "bank"),
        (None, "bank"),
    ],
)
def test_document_type_maps_to_source_type(doc_type: str | None, expected: str) -> None:
    assert source_type_for(doc_type) == expected


def test_extracted_transactions_become_candidates() -> None:
    result = ExtractionResult.model_validate(
        {
            "transactions": [
                {
                    "date": "2024-06-03",
                    "amount": -250.5,
                    "direction": "expense",
                    "description": "Latte",
                    "merchant": "Cafe Coffee Day",
                },
                {
                    "date": "2024-06-04",
                    "amount": "1,200",
                    "direction": "income",
                    "description": "Consulting fee",
                    "reference": "INV-77",
                },
            ],
            "metadata": {"document_type": "receipt", "confidence": 0.8},
        }
    )

    first, second = extraction_to_candidates(result)

    assert first.date == dt.date(2024, 6, 3)
    assert first.amount == Decimal("250.50")
    assert first.direction == "outflow"
    assert first.description == "Cafe Coffee Day - Latte"
    assert first.merchant == "Cafe Coffee Day"
    assert first.raw is not None
    assert first.raw["metadata"]["document_type"] == "receipt"
    assert first.raw["extracted"]["description"] == "Latte"

    assert second.direction == "inflow"
    assert second.amount == Decimal("1200.00")
    assert second.reference == "INV-77"


def test_unusable_rows_are_skipped() -> None:
    result = ExtractionResult.model_validate(
        {
            "transactions": [
                {"date": None, "amount": 10, "description": "no date"},
                {"date": "2024-06-01", "amount": None, "description": "no amount"},
                {"date": "not a date", "amount": 5, "description": "bad date"},
                {"date": "2024-06-01", "amount": "abc", "description": "bad amount"},
                {"date": "2024-06-01", "amount": 7, "description": "kept"},
            ]
        }
    )

    (kept,) = extraction_to_candidates(result)

    assert kept.description == "kept"
    assert kept.direction == "outflow"


def test_nothing_usable_is_an_error() -> None:
    result = ExtractionResult.model_validate(
        {"transactions": [{"date": "2024-06-01", "amount": 1, "description": "  "}]}
    )

    with pytest.raises(IngestValidationError, match="No transactions found in this document."):
        extraction_to_candidates(result)
