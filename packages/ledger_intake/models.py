"""Data models and value parsing shared across ``ledger_intake``.

Inbound payloads (candidate transactions, rule matchers) are Pydantic models so
that malformed input is rejected at the boundary. Results passed between the
pipeline stages and returned to callers are frozen dataclasses.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .errors import IngestValidationError

type Direction = Literal["inflow", "outflow"]
type SourceType = Literal["bank", "upi", "card", "cash"]
type Method = Literal["manual", "rule", "history", "ai", "uncategorized"]
type ReviewStatus = Literal["confirmed", "needs_review"]

SOURCE_TYPES: tuple[str, ...] = ("bank", "upi", "card", "cash")

_DIRECTION_SYNONYMS: dict[str, str] = {
    "inflow": "inflow",
    "credit": "inflow",
    "cr": "inflow",
    "outflow": "outflow",
    "debit": "outflow",
    "dr": "outflow",
}

_CENTS = Decimal("0.01")


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def parse_direction(raw: Any) -> str:
    """Map a direction token (``credit``/``CR``/``debit``/...) to inflow/outflow."""

    token = str(raw or "").strip().lower()
    direction = _DIRECTION_SYNONYMS.get(token)
    if direction is None:
        raise IngestValidationError(f"Invalid direction: {raw!r}")
    return direction


def parse_amount(raw: Any) -> Decimal:
    """Return the non-negative magnitude of ``raw`` rounded to cents.

    Thousands separators are stripped. Non-numeric and non-finite values
    raise :class:`IngestValidationError`.
    """

    if isinstance(raw, bool) or raw is None:
        raise IngestValidationError(f"Invalid amount: {raw!r}")
    if isinstance(raw, Decimal):
        value = raw
    else:
        text = str(raw).strip().replace(",", "")
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise IngestValidationError(f"Invalid amount: {raw!r}") from None
    if not value.is_finite():
        raise IngestValidationError(f"Invalid amount: {raw!r}")
    return abs(value).quantize(_CENTS, rounding=ROUND_HALF_UP)


def parse_date(raw: Any) -> dt.date:
    """Parse an ISO-8601 date (a datetime keeps only its date part)."""

    if isinstance(raw, dt.datetime):
        return raw.date()
    if isinstance(raw, dt.date):
        return raw
    text = str(raw or "").strip()
    if text:
        try:
            return dt.date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return dt.datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise IngestValidationError(f"Invalid date: {raw!r}")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# ---------------------------------------------------------------------------
# Inbound models
# ---------------------------------------------------------------------------


class CandidateTransaction(BaseModel):
    """A transaction tuple produced by an ingestion adapter.

    ``direction`` may be omitted when ``amount`` carries a sign: negative
    amounts are outflows, everything else is an inflow.
    """

    model_config = ConfigDict(frozen=True)

    date: dt.date
    amount: Decimal
    direction: Direction
    description: str
    reference: str | None = None
    merchant: str | None = None
    # Provenance payload stored verbatim on the raw row.
    raw: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _direction_from_sign(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("direction"):
            amount = data.get("amount")
            try:
                negative = Decimal(str(amount).strip().replace(",", "")) < 0
            except (InvalidOperation, ValueError):
                return data
            data = {**data, "direction": "outflow" if negative else "inflow"}
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> dt.date:
        return parse_date(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, v: Any) -> Decimal:
        return parse_amount(v)

    @field_validator("direction", mode="before")
    @classmethod
    def _parse_direction(cls, v: Any) -> str:
        return parse_direction(v)

    @field_validator("description", mode="before")
    @classmethod
    def _require_description(cls, v: Any) -> str:
        text = str(v or "").strip()
        if not text:
            raise IngestValidationError("description is required")
        return text

    @field_validator("reference", "merchant", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Any:
        return _blank_to_none(v)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryInfo:
    code: str
    name: str
    ledger_type: str


@dataclass(frozen=True, slots=True)
class TransactionView:
    """The normalized fields a classification stage may look at."""

    normalized_id: int
    entity_id: int
    transaction_date: dt.date
    amount: Decimal
    direction: str
    description_clean: str
    reference_extracted: str | None = None


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of the classification pipeline for one transaction."""

    category_code: str | None
    method: str
    confidence: float
    explanation: str
    status: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "category_code": self.category_code,
            "method": self.method,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "status": self.status,
        }


@dataclass(frozen=True, slots=True)
class UploadResult:
    uploaded_file_id: int
    was_existing: bool
    raw_count: int


@dataclass(frozen=True, slots=True)
class IngestedRow:
    raw_transaction_id: int
    normalized_transaction_id: int
    decision: Decision


@dataclass(frozen=True, slots=True)
class IngestResult:
    uploaded_file_id: int | None
    was_existing: bool
    raw_count: int
    rows: tuple[IngestedRow, ...] = ()

    @property
    def needs_review_count(self) -> int:
        return sum(1 for r in self.rows if r.decision.status == "needs_review")


@dataclass(frozen=True, slots=True)
class CommitResult:
    uploaded_file_id: int
    committed: bool
    blocking_count: int
    committed_at: dt.datetime | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class OverrideResult:
    normalized_transaction_id: int
    override_rule_id: int
    audit_log_id: int
    before: dict[str, Any] | None
    after: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ReviewItem:
    categorization_id: int
    normalized_transaction_id: int
    uploaded_file_id: int | None
    transaction_date: dt.date
    amount: Decimal
    direction: str
    description_clean: str
    reference_extracted: str | None
    category_code: str | None
    category_name: str | None
    method: str
    confidence: float
    explanation: str
    status: str
    decided_at: dt.datetime


# ---------------------------------------------------------------------------
# AI stage outcome (tagged)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AiMatched:
    category_code: str
    confidence: float
    explanation: str
    signals: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AiNoMatch:
    reason: str


@dataclass(frozen=True, slots=True)
class AiServiceUnavailable:
    error: str


type AiOutcome = AiMatched | AiNoMatch | AiServiceUnavailable


__all__ = [
    "AiMatched",
    "AiNoMatch",
    "AiOutcome",
    "AiServiceUnavailable",
    "CandidateTransaction",
    "CategoryInfo",
    "CommitResult",
    "Decision",
    "Direction",
    "IngestResult",
    "IngestedRow",
    "Method",
    "OverrideResult",
    "ReviewItem",
    "ReviewStatus",
    "SOURCE_TYPES",
    "SourceType",
    "TransactionView",
    "UploadResult",
    "parse_amount",
    "parse_date",
    "parse_direction",
]
