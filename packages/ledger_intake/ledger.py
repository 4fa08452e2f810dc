"""Ingestion ledger: upload deduplication and the commit gate.

An upload is identified by the SHA-256 of its content within an entity. A
repeat upload returns the original upload id and its raw-row count without
writing anything. An upload moves ``staged -> committed`` only when every
one of its transactions is classified and none still needs review.
"""

from __future__ import annotations

from datetime import UTC, datetime

from db.models.finance import (
    AcctNormalizedTransaction,
    AcctRawTransaction,
    AcctTransactionCategorization,
    AcctUploadedFile,
)
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import IngestValidationError, NotFoundError
from .logging_setup import get_logger
from .models import SOURCE_TYPES, CommitResult, UploadResult

_LIST_LIMIT_DEFAULT: int = 20

_logger = get_logger("ledger_intake.ledger")


def _find_upload(session: Session, entity_id: int, content_sha256: str) -> AcctUploadedFile | None:
    return session.execute(
        select(AcctUploadedFile).where(
            AcctUploadedFile.entity_id == entity_id,
            AcctUploadedFile.content_sha256 == content_sha256,
        )
    ).scalars().first()


def count_raw_for_upload(session: Session, uploaded_file_id: int) -> int:
    return session.execute(
        select(func.count())
        .select_from(AcctRawTransaction)
        .where(AcctRawTransaction.uploaded_file_id == uploaded_file_id)
    ).scalar_one()


def find_existing_upload(
    session: Session, *, entity_id: int, content_sha256: str
) -> UploadResult | None:
    """Return the dedup result for a hash already uploaded to the entity, if any."""

    row = _find_upload(session, entity_id, content_sha256.lower())
    if row is None:
        return None
    return UploadResult(
        uploaded_file_id=row.id,
        was_existing=True,
        raw_count=count_raw_for_upload(session, row.id),
    )


def create_upload(
    session: Session,
    *,
    entity_id: int,
    content_sha256: str,
    source_type: str = "bank",
    original_name: str | None = None,
    mime_type: str | None = None,
    size_bytes: int | None = None,
    storage_uri: str | None = None,
) -> UploadResult:
    """Register an upload, or return the existing one for the same content.

    Must be the first write of its transaction: a concurrent identical upload
    surfaces as a unique violation, which is handled by rolling back and
    re-reading the winner.
    """

    if source_type not in SOURCE_TYPES:
        raise ValueError(f"Invalid source_type: {source_type!r}")
    sha = content_sha256.strip().lower()

    existing = find_existing_upload(session, entity_id=entity_id, content_sha256=sha)
    if existing is not None:
        _logger.info(
            "ledger:upload_dedup entity_id=%d upload_id=%d raw_count=%d",
            entity_id,
            existing.uploaded_file_id,
            existing.raw_count,
        )
        return existing

    row = AcctUploadedFile(
        entity_id=entity_id,
        content_sha256=sha,
        storage_uri=storage_uri,
        source_type=source_type,
        original_name=original_name,
        mime_type=mime_type,
        size_bytes=size_bytes,
        status="staged",
    )
    try:
        session.add(row)
        session.flush()
    except IntegrityError:
        session.rollback()
        winner = find_existing_upload(session, entity_id=entity_id, content_sha256=sha)
        if winner is None:
            # Not the dedup constraint; bubble up original
            raise
        _logger.info(
            "ledger:upload_dedup_race entity_id=%d upload_id=%d",
            entity_id,
            winner.uploaded_file_id,
        )
        return winner

    _logger.info("ledger:upload_created entity_id=%d upload_id=%d", entity_id, row.id)
    return UploadResult(uploaded_file_id=row.id, was_existing=False, raw_count=0)


def lock_staged_upload(
    session: Session, *, entity_id: int, uploaded_file_id: int
) -> AcctUploadedFile:
    """Lock a ``staged`` upload of the entity so rows can be attached to it."""

    upload = session.execute(
        select(AcctUploadedFile)
        .where(
            AcctUploadedFile.id == uploaded_file_id,
            AcctUploadedFile.entity_id == entity_id,
        )
        .with_for_update()
    ).scalars().first()
    if upload is None:
        raise NotFoundError(f"Unknown upload: {uploaded_file_id}")
    if upload.status != "staged":
        raise IngestValidationError(
            f"Upload {uploaded_file_id} is already committed; no rows can be added."
        )
    return upload


def count_needs_review(session: Session, *, uploaded_file_id: int) -> int:
    """Count the upload's transactions that block a commit.

    A transaction blocks while its categorization is ``needs_review`` or while
    it has no categorization at all (not classified yet, or its batch failed
    before classification was recorded).
    """

    return session.execute(
        select(func.count())
        .select_from(AcctNormalizedTransaction)
        .join(
            AcctRawTransaction,
            AcctRawTransaction.id == AcctNormalizedTransaction.raw_transaction_id,
        )
        .outerjoin(
            AcctTransactionCategorization,
            AcctTransactionCategorization.normalized_transaction_id
            == AcctNormalizedTransaction.id,
        )
        .where(
            AcctRawTransaction.uploaded_file_id == uploaded_file_id,
            or_(
                AcctTransactionCategorization.id.is_(None),
                AcctTransactionCategorization.status == "needs_review",
            ),
        )
    ).scalar_one()


def commit_upload(session: Session, *, entity_id: int, uploaded_file_id: int) -> CommitResult:
    """Flip the upload to ``committed`` unless transactions still need review.

    The blocking count is taken inside the caller's transaction, after the
    upload row is locked, so a concurrent override or ingestion cannot slip
    between the check and the status change. Committing an already committed
    upload succeeds without changes.
    """

    upload = session.execute(
        select(AcctUploadedFile)
        .where(
            AcctUploadedFile.id == uploaded_file_id,
            AcctUploadedFile.entity_id == entity_id,
        )
        .with_for_update()
    ).scalars().first()
    if upload is None:
        raise NotFoundError(f"Unknown upload: {uploaded_file_id}")

    if upload.status == "committed":
        return CommitResult(
            uploaded_file_id=upload.id,
            committed=True,
            blocking_count=0,
            committed_at=upload.committed_at,
            message="Upload already committed.",
        )

    blocking = count_needs_review(session, uploaded_file_id=upload.id)
    if blocking > 0:
        _logger.info("ledger:commit_blocked upload_id=%d blocking=%d", upload.id, blocking)
        return CommitResult(
            uploaded_file_id=upload.id,
            committed=False,
            blocking_count=blocking,
            message=f"Cannot commit: {blocking} transactions still need review.",
        )

    upload.status = "committed"
    upload.committed_at = datetime.now(UTC)
    session.flush()
    _logger.info("ledger:committed upload_id=%d", upload.id)
    return CommitResult(
        uploaded_file_id=upload.id,
        committed=True,
        blocking_count=0,
        committed_at=upload.committed_at,
    )


def list_uploads(
    session: Session,
    *,
    entity_id: int,
    status: str | None = None,
    limit: int = _LIST_LIMIT_DEFAULT,
) -> list[AcctUploadedFile]:
    """Most recent uploads of the entity, optionally filtered by status."""

    stmt = select(AcctUploadedFile).where(AcctUploadedFile.entity_id == entity_id)
    if status is not None:
        stmt = stmt.where(AcctUploadedFile.status == status)
    stmt = stmt.order_by(AcctUploadedFile.uploaded_at.desc(), AcctUploadedFile.id.desc())
    return list(session.execute(stmt.limit(max(1, limit))).scalars())


__all__ = [
    "commit_upload",
    "count_needs_review",
    "count_raw_for_upload",
    "create_upload",
    "find_existing_upload",
    "list_uploads",
    "lock_staged_upload",
]
