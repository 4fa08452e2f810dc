from __future__ import annotations

import hashlib

import pytest
from db.client import session_scope
from db.models.finance import AcctRawTransaction, AcctUploadedFile
from sqlalchemy import func, select

import ledger_intake.ingest.batch as batch_mod
import ledger_intake.ledger as ledger_mod
from ledger_intake import api
from ledger_intake.errors import IngestValidationError, NotFoundError
from ledger_intake.ingest.batch import UploadSpec, ingest
from ledger_intake.models import AiNoMatch, CandidateTransaction
from ledger_intake.settings import IntakeSettings

from tests.helpers.db import create_entity

_SHA = hashlib.sha256(b"statement-june").hexdigest()
_SETTINGS = IntakeSettings(classify_concurrency=1)


# ---- Helpers -----------------------------------------------------------------


def _no_ai(request):
    return AiNoMatch(reason="disabled in tests")


def _ingest_upload(db_url: str, entity_id: int, sha: str = _SHA):
    candidates = [
        CandidateTransaction(
            date="2024-06-01", amount="1500.00", direction="debit", description="ZOMATO ORDER 1"
        ),
        CandidateTransaction(
            date="2024-06-02", amount="999.00", direction="debit", description="MYSTERY SHOP"
        ),
    ]
    return ingest(
        candidates,
        entity_id=entity_id,
        source_type="bank",
        upload=UploadSpec(content_sha256=sha, original_name="june.csv"),
        database_url=db_url,
        settings=_SETTINGS,
        ai_classifier=_no_ai,
    )


def _count(db_url: str, model) -> int:
    with session_scope(database_url=db_url) as s:
        return s.execute(select(func.count()).select_from(model)).scalar_one()


# ---- Upload dedup ------------------------------------------------------------


def test_same_content_returns_existing_upload(db_url: str, entity_id: int) -> None:
    first = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)
    again = api.create_upload(
        entity_id=entity_id, content_sha256=_SHA.upper(), database_url=db_url
    )

    assert first.was_existing is False and first.raw_count == 0
    assert again.was_existing is True
    assert again.uploaded_file_id == first.uploaded_file_id
    assert _count(db_url, AcctUploadedFile) == 1


def test_dedup_is_per_entity(db_url: str, entity_id: int) -> None:
    other = create_entity(db_url, owner_ref="other-owner")

    a = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)
    b = api.create_upload(entity_id=other, content_sha256=_SHA, database_url=db_url)

    assert not b.was_existing
    assert a.uploaded_file_id != b.uploaded_file_id


def test_repeat_ingest_writes_nothing(db_url: str, entity_id: int) -> None:
    first = _ingest_upload(db_url, entity_id)
    raw_before = _count(db_url, AcctRawTransaction)

    again = _ingest_upload(db_url, entity_id)

    assert again.was_existing is True
    assert again.uploaded_file_id == first.uploaded_file_id
    assert again.raw_count == 2
    assert again.rows == ()
    assert _count(db_url, AcctRawTransaction) == raw_before == 2


def test_concurrent_duplicate_resolves_to_winner(
    db_url: str, entity_id: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    winner = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)

    # The losing request does not see the winner on its first lookup
    real_find = ledger_mod.find_existing_upload
    lookups: list[int] = []

    def racing_find(session, *, entity_id, content_sha256):
        lookups.append(1)
        if len(lookups) == 1:
            return None
        return real_find(session, entity_id=entity_id, content_sha256=content_sha256)

    monkeypatch.setattr(ledger_mod, "find_existing_upload", racing_find)

    with session_scope(database_url=db_url) as session:
        loser = ledger_mod.create_upload(session, entity_id=entity_id, content_sha256=_SHA)

    assert loser.was_existing is True
    assert loser.uploaded_file_id == winner.uploaded_file_id
    assert len(lookups) == 2
    assert _count(db_url, AcctUploadedFile) == 1


def test_unknown_source_type_is_rejected(db_url: str, entity_id: int) -> None:
    with pytest.raises(ValueError, match="source_type"):
        api.create_upload(
            entity_id=entity_id, content_sha256=_SHA, source_type="crypto", database_url=db_url
        )


# ---- Commit gate -------------------------------------------------------------


def test_commit_blocked_until_review_is_done(db_url: str, entity_id: int) -> None:
    result = _ingest_upload(db_url, entity_id)
    upload_id = result.uploaded_file_id
    assert upload_id is not None
    pending = [r for r in result.rows if r.decision.status == "needs_review"]
    assert len(pending) == 1

    blocked = api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload_id, database_url=db_url
    )
    assert blocked.committed is False
    assert blocked.blocking_count == 1
    assert blocked.message == "Cannot commit: 1 transactions still need review."

    api.apply_override(
        entity_id=entity_id,
        normalized_id=pending[0].normalized_transaction_id,
        category_code="BUSINESS_EXPENSE",
        actor="user-1",
        database_url=db_url,
    )
    ok = api.commit_upload(entity_id=entity_id, uploaded_file_id=upload_id, database_url=db_url)
    assert ok.committed is True
    assert ok.blocking_count == 0
    assert ok.committed_at is not None

    again = api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload_id, database_url=db_url
    )
    assert again.committed is True
    assert again.message == "Upload already committed."

    (row,) = api.list_uploads(entity_id=entity_id, database_url=db_url)
    assert row["status"] == "committed"
    assert row["raw_count"] == 2


def test_commit_of_unknown_or_foreign_upload(db_url: str, entity_id: int) -> None:
    upload = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)
    other = create_entity(db_url, owner_ref="other-owner")

    with pytest.raises(NotFoundError):
        api.commit_upload(entity_id=entity_id, uploaded_file_id=9999, database_url=db_url)
    with pytest.raises(NotFoundError):
        api.commit_upload(
            entity_id=other, uploaded_file_id=upload.uploaded_file_id, database_url=db_url
        )


def test_empty_upload_commits_immediately(db_url: str, entity_id: int) -> None:
    upload = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)

    res = api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload.uploaded_file_id, database_url=db_url
    )

    assert res.committed is True


def test_unclassified_rows_block_commit(
    db_url: str, entity_id: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_record(session, **kwargs):
        raise RuntimeError("database went away")

    original = batch_mod.record_decisions
    monkeypatch.setattr(batch_mod, "record_decisions", failing_record)
    with pytest.raises(RuntimeError):
        _ingest_upload(db_url, entity_id)
    monkeypatch.setattr(batch_mod, "record_decisions", original)
    (upload,) = api.list_uploads(entity_id=entity_id, database_url=db_url)
    assert upload["raw_count"] == 2

    blocked = api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload["id"], database_url=db_url
    )
    assert blocked.committed is False
    assert blocked.blocking_count == 2

    assert api.classify_pending(
        entity_id=entity_id,
        uploaded_file_id=upload["id"],
        database_url=db_url,
        settings=_SETTINGS,
        ai_classifier=_no_ai,
    ) == 2
    # ZOMATO is confirmed by a rule; MYSTERY SHOP still needs review
    still = api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload["id"], database_url=db_url
    )
    assert still.committed is False
    assert still.blocking_count == 1


def test_crashing_classifier_leaves_upload_blocked(db_url: str, entity_id: int) -> None:
    def broken_ai(request):
        raise RuntimeError("classifier crashed")

    result = ingest(
        [
            CandidateTransaction(
                date="2024-06-02", amount="999.00", direction="debit", description="MYSTERY SHOP"
            )
        ],
        entity_id=entity_id,
        source_type="bank",
        upload=UploadSpec(content_sha256=_SHA),
        database_url=db_url,
        settings=_SETTINGS,
        ai_classifier=broken_ai,
    )

    (row,) = result.rows
    assert (row.decision.method, row.decision.status) == ("uncategorized", "needs_review")
    assert result.uploaded_file_id is not None
    res = api.commit_upload(
        entity_id=entity_id, uploaded_file_id=result.uploaded_file_id, database_url=db_url
    )
    assert res.committed is False
    assert res.blocking_count == 1


# ---- Attaching batches to a registered upload ------------------------------------


def test_ingest_into_registered_upload(db_url: str, entity_id: int) -> None:
    upload = api.create_upload(
        entity_id=entity_id, content_sha256=_SHA, original_name="june.csv", database_url=db_url
    )

    result = api.ingest(
        [
            CandidateTransaction(
                date="2024-06-01", amount="1500.00", direction="debit", description="ZOMATO ORDER 1"
            )
        ],
        entity_id=entity_id,
        source_type="bank",
        uploaded_file_id=upload.uploaded_file_id,
        database_url=db_url,
        settings=_SETTINGS,
        ai_classifier=_no_ai,
    )

    assert result.uploaded_file_id == upload.uploaded_file_id
    assert result.raw_count == 1
    (item,) = api.list_review_queue(
        entity_id=entity_id,
        status="confirmed",
        uploaded_file_id=upload.uploaded_file_id,
        database_url=db_url,
    )
    assert item.description_clean == "ZOMATO ORDER 1"
    again = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)
    assert (again.was_existing, again.raw_count) == (True, 1)
    assert api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload.uploaded_file_id, database_url=db_url
    ).committed


def test_ingest_into_unusable_upload_is_refused(db_url: str, entity_id: int) -> None:
    upload = api.create_upload(entity_id=entity_id, content_sha256=_SHA, database_url=db_url)
    other = create_entity(db_url, owner_ref="other-owner")
    candidates = [
        CandidateTransaction(date="2024-06-01", amount="1", direction="debit", description="X")
    ]

    def attach(owner: int, upload_id: int, **kwargs):
        return api.ingest(
            candidates,
            entity_id=owner,
            source_type="bank",
            uploaded_file_id=upload_id,
            database_url=db_url,
            settings=_SETTINGS,
            ai_classifier=_no_ai,
            **kwargs,
        )

    with pytest.raises(NotFoundError):
        attach(other, upload.uploaded_file_id)
    with pytest.raises(ValueError, match="either upload or uploaded_file_id"):
        attach(entity_id, upload.uploaded_file_id, upload=UploadSpec(content_sha256=_SHA))

    api.commit_upload(
        entity_id=entity_id, uploaded_file_id=upload.uploaded_file_id, database_url=db_url
    )
    with pytest.raises(IngestValidationError, match="already committed"):
        attach(entity_id, upload.uploaded_file_id)

    assert _count(db_url, AcctRawTransaction) == 0


def test_list_uploads_filters_by_status(db_url: str, entity_id: int) -> None:
    a = api.create_upload(entity_id=entity_id, content_sha256="a" * 64, database_url=db_url)
    api.create_upload(entity_id=entity_id, content_sha256="b" * 64, database_url=db_url)
    api.commit_upload(entity_id=entity_id, uploaded_file_id=a.uploaded_file_id, database_url=db_url)

    staged = api.list_uploads(entity_id=entity_id, status="staged", database_url=db_url)
    committed = api.list_uploads(entity_id=entity_id, status="committed", database_url=db_url)

    assert [u["content_sha256"] for u in staged] == ["b" * 64]
    assert [u["id"] for u in committed] == [a.uploaded_file_id]
