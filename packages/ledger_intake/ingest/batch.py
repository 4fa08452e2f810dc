# ruff: noqa: I001
"""Batch ingestion: persist, classify, record.

A batch runs in three phases:

1. one transaction writes the upload (when given), the raw rows and their
   normalized rows, and seeds the entity's default rules on first use;
2. rows are classified concurrently (bounded by
   ``settings.classify_concurrency``), each worker with its own session,
   against a rule-set snapshot taken once for the batch;
3. one transaction writes all categorizations.

Rows of the same batch never vote for each other in the history stage (their
categorizations only land in phase 3). A classifier failure degrades the row
to uncategorized. Any other failure in phase 2 or 3 leaves the phase-1 rows
without a categorization; they block the upload's commit until
:func:`classify_pending` picks them up.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.finance import (
    AcctNormalizedTransaction,
    AcctRawTransaction,
    AcctTransactionCategorization,
)

from ..categories import list_categories
from ..ledger import create_upload, lock_staged_upload
from ..logging_setup import get_logger
from ..models import (
    SOURCE_TYPES,
    CandidateTransaction,
    CategoryInfo,
    Decision,
    IngestedRow,
    IngestResult,
    TransactionView,
)
from ..normalize import normalize_raw_transaction
from ..pipeline import AiClassifier, classify_transaction
from ..pmap import p_map
from ..rules import RULE_CACHE, RuleSet, RuleSetCache, ensure_seed_rules_for_entity
from ..settings import IntakeSettings, load_settings

_logger = get_logger("ledger_intake.ingest")


@dataclass(frozen=True, slots=True)
class UploadSpec:
    """Upload metadata registered together with the batch."""

    content_sha256: str
    original_name: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    storage_uri: str | None = None


def _view(row: AcctNormalizedTransaction) -> TransactionView:
    return TransactionView(
        normalized_id=row.id,
        entity_id=row.entity_id,
        transaction_date=row.transaction_date,
        amount=row.amount,
        direction=row.direction,
        description_clean=row.description_clean,
        reference_extracted=row.reference_extracted,
    )


def _raw_payload(candidate: CandidateTransaction) -> dict[str, Any] | None:
    payload: dict[str, Any] = {}
    if candidate.raw:
        payload.update(candidate.raw)
    if candidate.merchant:
        payload.setdefault("merchant", candidate.merchant)
    return payload or None


def persist_batch(
    session: Session,
    *,
    entity_id: int,
    source_type: str,
    candidates: Sequence[CandidateTransaction],
    uploaded_file_id: int | None,
    timezone: str,
) -> list[tuple[int, TransactionView]]:
    """Insert raw + normalized rows; return ``(raw_id, view)`` in input order."""

    if source_type not in SOURCE_TYPES:
        raise ValueError(f"Invalid source_type: {source_type!r}")

    raws: list[AcctRawTransaction] = []
    for c in candidates:
        raw = AcctRawTransaction(
            entity_id=entity_id,
            uploaded_file_id=uploaded_file_id,
            source_type=source_type,
            transaction_date=c.date,
            amount=c.amount,
            direction=c.direction,
            raw_description=c.description,
            reference_id=c.reference,
            raw_json=_raw_payload(c),
        )
        session.add(raw)
        raws.append(raw)
    session.flush()

    normalized: list[AcctNormalizedTransaction] = []
    for raw in raws:
        payload = normalize_raw_transaction(
            raw.raw_description, raw.reference_id, timezone=timezone
        )
        norm = AcctNormalizedTransaction(
            entity_id=entity_id,
            raw_transaction_id=raw.id,
            transaction_date=raw.transaction_date,
            amount=raw.amount,
            direction=raw.direction,
            description_clean=payload.description_clean,
            reference_extracted=payload.reference_extracted,
            timezone=payload.timezone,
            normalization_version=payload.normalization_version,
            normalization_diff=payload.diff,
        )
        session.add(norm)
        normalized.append(norm)
    session.flush()
    return [(raw.id, _view(norm)) for raw, norm in zip(raws, normalized, strict=True)]


def classify_batch(
    views: Sequence[TransactionView],
    *,
    database_url: str | None,
    rule_set: RuleSet,
    categories: Sequence[CategoryInfo],
    settings: IntakeSettings,
    ai_classifier: AiClassifier | None = None,
) -> list[Decision]:
    """Classify ``views`` concurrently; results follow input order."""

    def _one(view: TransactionView) -> Decision:
        with session_scope(database_url=database_url) as session:
            return classify_transaction(
                session,
                view,
                rule_set=rule_set,
                categories=categories,
                settings=settings,
                ai_classifier=ai_classifier,
            )

    return p_map(views, _one, concurrency=settings.classify_concurrency)


def record_decisions(
    session: Session,
    *,
    entity_id: int,
    views: Sequence[TransactionView],
    decisions: Sequence[Decision],
) -> int:
    """Insert categorizations for rows that do not have one yet."""

    ids = [v.normalized_id for v in views]
    already: set[int] = set()
    if ids:
        already = set(
            session.execute(
                select(AcctTransactionCategorization.normalized_transaction_id).where(
                    AcctTransactionCategorization.normalized_transaction_id.in_(ids)
                )
            ).scalars()
        )
    written = 0
    for view, decision in zip(views, decisions, strict=True):
        if view.normalized_id in already:
            continue
        session.add(
            AcctTransactionCategorization(
                entity_id=entity_id,
                normalized_transaction_id=view.normalized_id,
                category_code=decision.category_code,
                method=decision.method,
                confidence=decision.confidence,
                explanation=decision.explanation,
                status=decision.status,
            )
        )
        written += 1
    session.flush()
    return written


def _classify_and_record(
    views: Sequence[TransactionView],
    *,
    database_url: str | None,
    entity_id: int,
    settings: IntakeSettings,
    ai_classifier: AiClassifier | None,
    rule_cache: RuleSetCache,
) -> list[Decision]:
    with session_scope(database_url=database_url) as session:
        rule_set = rule_cache.get(session, entity_id)
        categories = list_categories(session)

    decisions = classify_batch(
        views,
        database_url=database_url,
        rule_set=rule_set,
        categories=categories,
        settings=settings,
        ai_classifier=ai_classifier,
    )

    with session_scope(database_url=database_url) as session:
        record_decisions(session, entity_id=entity_id, views=views, decisions=decisions)
    return decisions


def ingest(
    candidates: Sequence[CandidateTransaction],
    *,
    entity_id: int,
    source_type: str,
    upload: UploadSpec | None = None,
    uploaded_file_id: int | None = None,
    database_url: str | None = None,
    settings: IntakeSettings | None = None,
    ai_classifier: AiClassifier | None = None,
    rule_cache: RuleSetCache | None = None,
) -> IngestResult:
    """Persist and classify one batch of candidates.

    Parameters
    ----------
    candidates:
        Already validated candidates. An empty batch is allowed; with an
        upload it leaves a staged upload with no rows, which commits at once.
    entity_id:
        Owning entity; rules and history are scoped to it.
    source_type:
        ``bank``, ``upi``, ``card`` or ``cash``.
    upload:
        When given, the batch is registered as an upload first. A dedup hit
        returns the original upload's id and raw count and writes nothing.
    uploaded_file_id:
        Attach the batch to an upload registered earlier (see
        :func:`~ledger_intake.ledger.create_upload`). It must be a ``staged``
        upload of ``entity_id``. Mutually exclusive with ``upload``.
    database_url:
        Optional DB URL override. Falls back to ``DATABASE_URL`` when ``None``.
    settings / ai_classifier / rule_cache:
        Overrides for tests and embedding hosts.

    Returns
    -------
    IngestResult
    """

    if upload is not None and uploaded_file_id is not None:
        raise ValueError("Pass either upload or uploaded_file_id, not both")
    settings = settings or load_settings()
    rule_cache = rule_cache or RULE_CACHE

    # Phase 1
    with session_scope(database_url=database_url) as session:
        if uploaded_file_id is not None:
            lock_staged_upload(session, entity_id=entity_id, uploaded_file_id=uploaded_file_id)
        elif upload is not None:
            registered = create_upload(
                session,
                entity_id=entity_id,
                content_sha256=upload.content_sha256,
                source_type=source_type,
                original_name=upload.original_name,
                mime_type=upload.mime_type,
                size_bytes=upload.size_bytes,
                storage_uri=upload.storage_uri,
            )
            if registered.was_existing:
                return IngestResult(
                    uploaded_file_id=registered.uploaded_file_id,
                    was_existing=True,
                    raw_count=registered.raw_count,
                )
            uploaded_file_id = registered.uploaded_file_id
        seeded = ensure_seed_rules_for_entity(session, entity_id)
        persisted = persist_batch(
            session,
            entity_id=entity_id,
            source_type=source_type,
            candidates=candidates,
            uploaded_file_id=uploaded_file_id,
            timezone=settings.timezone,
        )
    if seeded:
        rule_cache.invalidate(entity_id)
    _logger.info(
        "ingest:persisted entity_id=%d upload_id=%s rows=%d",
        entity_id,
        uploaded_file_id,
        len(persisted),
    )

    # Phases 2 + 3
    views = [view for _raw_id, view in persisted]
    decisions = _classify_and_record(
        views,
        database_url=database_url,
        entity_id=entity_id,
        settings=settings,
        ai_classifier=ai_classifier,
        rule_cache=rule_cache,
    )

    rows = tuple(
        IngestedRow(
            raw_transaction_id=raw_id,
            normalized_transaction_id=view.normalized_id,
            decision=d,
        )
        for (raw_id, view), d in zip(persisted, decisions, strict=True)
    )
    result = IngestResult(
        uploaded_file_id=uploaded_file_id,
        was_existing=False,
        raw_count=len(rows),
        rows=rows,
    )
    _logger.info(
        "ingest:done entity_id=%d upload_id=%s rows=%d needs_review=%d",
        entity_id,
        uploaded_file_id,
        len(rows),
        result.needs_review_count,
    )
    return result


def classify_pending(
    *,
    entity_id: int,
    uploaded_file_id: int | None = None,
    database_url: str | None = None,
    settings: IntakeSettings | None = None,
    ai_classifier: AiClassifier | None = None,
    rule_cache: RuleSetCache | None = None,
) -> int:
    """Classify normalized rows that have no categorization yet; return the count."""

    settings = settings or load_settings()
    with session_scope(database_url=database_url) as session:
        stmt = (
            select(AcctNormalizedTransaction)
            .outerjoin(
                AcctTransactionCategorization,
                AcctTransactionCategorization.normalized_transaction_id
                == AcctNormalizedTransaction.id,
            )
            .where(
                AcctNormalizedTransaction.entity_id == entity_id,
                AcctTransactionCategorization.id.is_(None),
            )
            .order_by(AcctNormalizedTransaction.id)
        )
        if uploaded_file_id is not None:
            stmt = stmt.join(
                AcctRawTransaction,
                AcctRawTransaction.id == AcctNormalizedTransaction.raw_transaction_id,
            ).where(AcctRawTransaction.uploaded_file_id == uploaded_file_id)
        views = [_view(r) for r in session.execute(stmt).scalars()]
    if not views:
        return 0
    _classify_and_record(
        views,
        database_url=database_url,
        entity_id=entity_id,
        settings=settings,
        ai_classifier=ai_classifier,
        rule_cache=rule_cache or RULE_CACHE,
    )
    _logger.info("ingest:classified_pending entity_id=%d rows=%d", entity_id, len(views))
    return len(views)


__all__ = [
    "UploadSpec",
    "classify_batch",
    "classify_pending",
    "ingest",
    "persist_batch",
    "record_decisions",
]
