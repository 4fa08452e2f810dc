# ruff: noqa: I001
"""Workflow orchestrators for end-to-end upload flows.

These compose an adapter, the batch ingestion and the upload ledger behind a
single call each. ``api`` re-exports them.
"""

from __future__ import annotations

from collections.abc import Callable

from db.client import session_scope

from ..ingest.adapters.ai_extraction import (
    ExtractionResult,
    extraction_to_candidates,
    source_type_for,
)
from ..ingest.adapters.csv_statement import load_statement, sha256_hex
from ..ingest.batch import UploadSpec, ingest
from ..ledger import find_existing_upload
from ..logging_setup import get_logger
from ..models import CandidateTransaction, IngestResult
from ..pipeline import AiClassifier
from ..settings import IntakeSettings

_logger = get_logger("ledger_intake.workflows.upload_flow")


def ingest_csv_upload(
    content: bytes,
    *,
    entity_id: int,
    original_name: str | None = None,
    source_type: str = "bank",
    storage_uri: str | None = None,
    database_url: str | None = None,
    settings: IntakeSettings | None = None,
    ai_classifier: AiClassifier | None = None,
) -> IngestResult:
    """End-to-end: CSV bytes -> candidates -> dedup/persist -> classify.

    The CSV is parsed completely before anything is written; any parse or
    validation error aborts the upload.
    """

    statement = load_statement(content, original_name=original_name)
    return ingest(
        statement.candidates,
        entity_id=entity_id,
        source_type=source_type,
        upload=UploadSpec(
            content_sha256=statement.content_sha256,
            original_name=original_name,
            mime_type="text/csv",
            size_bytes=statement.size_bytes,
            storage_uri=storage_uri,
        ),
        database_url=database_url,
        settings=settings,
        ai_classifier=ai_classifier,
    )


def ingest_document_upload(
    content: bytes,
    *,
    entity_id: int,
    extract: Callable[[bytes], ExtractionResult],
    original_name: str | None = None,
    mime_type: str | None = None,
    storage_uri: str | None = None,
    database_url: str | None = None,
    settings: IntakeSettings | None = None,
    ai_classifier: AiClassifier | None = None,
) -> IngestResult:
    """End-to-end for scanned documents.

    The dedup check runs before ``extract`` so a repeated document never
    reaches OCR or the extraction model. Extraction errors propagate and
    nothing is persisted.
    """

    sha = sha256_hex(content)
    with session_scope(database_url=database_url) as session:
        existing = find_existing_upload(session, entity_id=entity_id, content_sha256=sha)
    if existing is not None:
        _logger.info(
            "upload_flow:document_dedup entity_id=%d upload_id=%d",
            entity_id,
            existing.uploaded_file_id,
        )
        return IngestResult(
            uploaded_file_id=existing.uploaded_file_id,
            was_existing=True,
            raw_count=existing.raw_count,
        )

    extraction = extract(content)
    candidates = extraction_to_candidates(extraction)
    return ingest(
        candidates,
        entity_id=entity_id,
        source_type=source_type_for(extraction.metadata.document_type),
        upload=UploadSpec(
            content_sha256=sha,
            original_name=original_name,
            mime_type=mime_type,
            size_bytes=len(content),
            storage_uri=storage_uri,
        ),
        database_url=database_url,
        settings=settings,
        ai_classifier=ai_classifier,
    )


def ingest_manual_entry(
    candidate: CandidateTransaction,
    *,
    entity_id: int,
    source_type: str = "cash",
    database_url: str | None = None,
    settings: IntakeSettings | None = None,
    ai_classifier: AiClassifier | None = None,
) -> IngestResult:
    """Ingest one manually entered transaction (no upload, no dedup)."""

    return ingest(
        [candidate],
        entity_id=entity_id,
        source_type=source_type,
        database_url=database_url,
        settings=settings,
        ai_classifier=ai_classifier,
    )


__all__ = ["ingest_csv_upload", "ingest_document_upload", "ingest_manual_entry"]
