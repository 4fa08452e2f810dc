"""Public API for the ``ledger_intake`` package.

Every function here owns its database transaction (``db.client.session_scope``)
and takes an optional ``database_url`` that falls back to ``DATABASE_URL``.
The session-level building blocks live in the modules they are imported from.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from db.client import session_scope

from . import categories as _categories
from . import entities as _entities
from . import ledger as _ledger
from . import overrides as _overrides
from . import review as _review
from . import rules as _rules
from .errors import NotFoundError
from .ingest.batch import UploadSpec, classify_pending, ingest
from .matcher import MatcherSpec
from .models import CategoryInfo, CommitResult, OverrideResult, ReviewItem, UploadResult
from .rules import RULE_CACHE, RuleSetCache
from .settings import IntakeSettings
from .workflows.upload_flow import ingest_csv_upload, ingest_document_upload, ingest_manual_entry


def seed_categories(*, database_url: str | None = None) -> int:
    """Insert missing default categories; return how many were added."""

    with session_scope(database_url=database_url) as session:
        return _categories.seed_default_categories(session)


def list_categories(*, database_url: str | None = None) -> list[CategoryInfo]:
    with session_scope(database_url=database_url) as session:
        return _categories.list_categories(session)


def resolve_entity_id(
    owner_ref: str, entity_id: int | None = None, *, database_url: str | None = None
) -> int:
    """Return the entity id the owner may act on (their default when omitted)."""

    with session_scope(database_url=database_url) as session:
        entity = _entities.resolve_entity(session, owner_ref, entity_id)
        if entity is None:
            raise NotFoundError(f"Unknown entity: {entity_id}")
        return entity.id


def create_upload(
    *,
    entity_id: int,
    content_sha256: str,
    source_type: str = "bank",
    original_name: str | None = None,
    mime_type: str | None = None,
    size_bytes: int | None = None,
    storage_uri: str | None = None,
    database_url: str | None = None,
) -> UploadResult:
    """Register an upload by content hash, or return the existing one."""

    with session_scope(database_url=database_url) as session:
        return _ledger.create_upload(
            session,
            entity_id=entity_id,
            content_sha256=content_sha256,
            source_type=source_type,
            original_name=original_name,
            mime_type=mime_type,
            size_bytes=size_bytes,
            storage_uri=storage_uri,
        )


def list_review_queue(
    *,
    entity_id: int,
    status: str = "needs_review",
    uploaded_file_id: int | None = None,
    limit: int | None = None,
    database_url: str | None = None,
    settings: IntakeSettings | None = None,
) -> list[ReviewItem]:
    with session_scope(database_url=database_url) as session:
        return _review.list_review_queue(
            session,
            entity_id=entity_id,
            status=status,
            uploaded_file_id=uploaded_file_id,
            limit=limit,
            settings=settings,
        )


def apply_override(
    *,
    entity_id: int,
    normalized_id: int,
    category_code: str,
    actor: str,
    reason: str | None = None,
    database_url: str | None = None,
    rule_cache: RuleSetCache | None = None,
) -> OverrideResult:
    """Apply a manual category choice atomically and refresh the entity's rules."""

    with session_scope(database_url=database_url) as session:
        result = _overrides.apply_override(
            session,
            entity_id=entity_id,
            normalized_id=normalized_id,
            category_code=category_code,
            actor=actor,
            reason=reason,
        )
    (rule_cache or RULE_CACHE).invalidate(entity_id)
    return result


def commit_upload(
    *, entity_id: int, uploaded_file_id: int, database_url: str | None = None
) -> CommitResult:
    with session_scope(database_url=database_url) as session:
        return _ledger.commit_upload(
            session, entity_id=entity_id, uploaded_file_id=uploaded_file_id
        )


def list_uploads(
    *,
    entity_id: int,
    status: str | None = None,
    database_url: str | None = None,
) -> list[dict[str, Any]]:
    with session_scope(database_url=database_url) as session:
        rows = _ledger.list_uploads(session, entity_id=entity_id, status=status)
        return [
            {
                "id": r.id,
                "original_name": r.original_name,
                "source_type": r.source_type,
                "status": r.status,
                "content_sha256": r.content_sha256,
                "uploaded_at": r.uploaded_at,
                "committed_at": r.committed_at,
                "raw_count": _ledger.count_raw_for_upload(session, r.id),
            }
            for r in rows
        ]


def create_rule(
    *,
    entity_id: int,
    name: str,
    category_code: str,
    matchers: MatcherSpec | Mapping[str, Any],
    priority: int = 100,
    explanation_template: str | None = None,
    database_url: str | None = None,
    rule_cache: RuleSetCache | None = None,
) -> int:
    """Create a system rule and return its id."""

    with session_scope(database_url=database_url) as session:
        row = _rules.create_categorization_rule(
            session,
            entity_id=entity_id,
            name=name,
            category_code=category_code,
            matchers=matchers,
            priority=priority,
            explanation_template=explanation_template,
        )
        rule_id = row.id
    (rule_cache or RULE_CACHE).invalidate(entity_id)
    return rule_id


def set_rule_enabled(
    *,
    entity_id: int,
    rule_id: int,
    enabled: bool,
    database_url: str | None = None,
    rule_cache: RuleSetCache | None = None,
) -> None:
    with session_scope(database_url=database_url) as session:
        _rules.set_rule_enabled(session, entity_id=entity_id, rule_id=rule_id, enabled=enabled)
    (rule_cache or RULE_CACHE).invalidate(entity_id)


__all__ = [
    "UploadSpec",
    "apply_override",
    "classify_pending",
    "commit_upload",
    "create_rule",
    "create_upload",
    "ingest",
    "ingest_csv_upload",
    "ingest_document_upload",
    "ingest_manual_entry",
    "list_categories",
    "list_review_queue",
    "list_uploads",
    "resolve_entity_id",
    "seed_categories",
    "set_rule_enabled",
]
