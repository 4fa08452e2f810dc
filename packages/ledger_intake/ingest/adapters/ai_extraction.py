"""Adapter for AI-extracted document transactions.

OCR and the extraction model live outside this package; they hand over an
:class:`ExtractionResult`. This module maps it to candidates:

- document type -> source type: ``statement`` -> bank, ``invoice`` -> card,
  ``receipt`` -> cash, anything else -> bank;
- ``direction == "income"`` -> inflow, everything else -> outflow;
- amounts become magnitudes;
- ``"<merchant> - <description>"`` when a merchant is present;
- candidates missing a date, a numeric amount or a description are skipped.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ...errors import IngestValidationError
from ...logging_setup import get_logger
from ...models import CandidateTransaction

_DOC_TYPE_TO_SOURCE: dict[str, str] = {
    "statement": "bank",
    "invoice": "card",
    "receipt": "cash",
}

_logger = get_logger("ledger_intake.ingest.ai_extraction")


class ExtractedTransaction(BaseModel):
    model_config = ConfigDict(extra="allow")

    date: str | None = None
    amount: float | str | None = None
    direction: str | None = None
    description: str | None = None
    merchant: str | None = None
    reference: str | None = None


class ExtractionMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    document_type: str | None = None
    confidence: float | None = None


class ExtractionResult(BaseModel):
    transactions: list[ExtractedTransaction] = Field(default_factory=list)
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)


def source_type_for(document_type: str | None) -> str:
    return _DOC_TYPE_TO_SOURCE.get((document_type or "").strip().lower(), "bank")


def _description(tx: ExtractedTransaction) -> str:
    desc = (tx.description or "").strip()
    merchant = (tx.merchant or "").strip()
    return f"{merchant} - {desc}" if merchant else desc


def extraction_to_candidates(result: ExtractionResult) -> list[CandidateTransaction]:
    """Map usable extracted transactions to candidates (invalid ones skipped).

    Raises :class:`IngestValidationError` when nothing usable remains.
    """

    metadata: dict[str, Any] = result.metadata.model_dump()
    out: list[CandidateTransaction] = []
    skipped = 0
    for idx, tx in enumerate(result.transactions):
        if not tx.date or tx.amount is None or not (tx.description or "").strip():
            skipped += 1
            continue
        direction = "inflow" if (tx.direction or "").strip().lower() == "income" else "outflow"
        try:
            out.append(
                CandidateTransaction(
                    date=tx.date,
                    amount=tx.amount,
                    direction=direction,
                    description=_description(tx),
                    reference=tx.reference,
                    merchant=tx.merchant,
                    raw={"extracted": tx.model_dump(), "metadata": metadata},
                )
            )
        except ValidationError as e:
            skipped += 1
            _logger.warning(
                "ai_extraction:skip_candidate index=%d errors=%d", idx, e.error_count()
            )
    if skipped:
        _logger.info("ai_extraction:skipped count=%d kept=%d", skipped, len(out))
    if not out:
        raise IngestValidationError("No transactions found in this document.")
    return out


__all__ = [
    "ExtractedTransaction",
    "ExtractionMetadata",
    "ExtractionResult",
    "extraction_to_candidates",
    "source_type_for",
]
