"""Manual category overrides and the learning they produce.

:func:`apply_override` writes, in the caller's single transaction:

- a learned override rule matching the same direction and cleaned description
  (consulted first by every later classification of the entity);
- the transaction's categorization, upserted to ``manual`` / 1.0 / confirmed;
- an append-only audit entry with before/after snapshots.

Unknown transactions or categories raise
:class:`~ledger_intake.errors.NotFoundError` before anything is written.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from db.models.finance import (
    AcctAuditLog,
    AcctNormalizedTransaction,
    AcctTransactionCategorization,
    AcctUserOverrideRule,
)
from sqlalchemy import select
from sqlalchemy.orm import Session

from .categories import get_category
from .errors import NotFoundError
from .logging_setup import get_logger
from .matcher import MatcherSpec
from .models import OverrideResult

OVERRIDE_ACTION = "CATEGORY_OVERRIDE"
OVERRIDE_TARGET_TYPE = "NormalizedTransaction"
DEFAULT_OVERRIDE_REASON = "Manual category selection"
_OVERRIDE_EXPLANATION = "User override"

_logger = get_logger("ledger_intake.overrides")


def _snapshot(row: AcctTransactionCategorization) -> dict[str, Any]:
    return {
        "category_code": row.category_code,
        "method": row.method,
        "confidence": float(row.confidence),
        "explanation": row.explanation,
        "status": row.status,
    }


def apply_override(
    session: Session,
    *,
    entity_id: int,
    normalized_id: int,
    category_code: str,
    actor: str,
    reason: str | None = None,
) -> OverrideResult:
    """Record a user's category choice for one transaction and learn from it.

    Parameters
    ----------
    session:
        The transaction all three writes belong to; commit/rollback is the
        caller's.
    entity_id:
        Scope; the transaction must belong to it.
    normalized_id:
        The normalized transaction being corrected.
    category_code:
        The chosen category.
    actor:
        Who made the change (stored on the rule and the audit entry).
    reason:
        Free text for the audit entry; defaults to ``"Manual category selection"``.
    """

    txn = session.execute(
        select(AcctNormalizedTransaction).where(
            AcctNormalizedTransaction.id == normalized_id,
            AcctNormalizedTransaction.entity_id == entity_id,
        )
    ).scalars().first()
    if txn is None:
        raise NotFoundError(f"Unknown transaction: {normalized_id}")
    get_category(session, category_code)

    current = session.execute(
        select(AcctTransactionCategorization)
        .where(AcctTransactionCategorization.normalized_transaction_id == normalized_id)
        .with_for_update()
    ).scalars().first()
    before = _snapshot(current) if current is not None else None

    matcher = MatcherSpec(direction=txn.direction, description_contains=txn.description_clean)
    rule = AcctUserOverrideRule(
        entity_id=entity_id,
        matchers=matcher.to_json(),
        category_code=category_code,
        created_by=actor,
        enabled=True,
    )
    session.add(rule)

    now = datetime.now(UTC)
    if current is None:
        current = AcctTransactionCategorization(
            entity_id=entity_id,
            normalized_transaction_id=normalized_id,
        )
        session.add(current)
    current.category_code = category_code
    current.method = "manual"
    current.confidence = 1.0
    current.explanation = _OVERRIDE_EXPLANATION
    current.status = "confirmed"
    current.decided_at = now
    after = _snapshot(current)

    audit = AcctAuditLog(
        entity_id=entity_id,
        actor_ref=actor,
        action=OVERRIDE_ACTION,
        target_type=OVERRIDE_TARGET_TYPE,
        target_id=str(normalized_id),
        reason=(reason or "").strip() or DEFAULT_OVERRIDE_REASON,
        before_json=before,
        after_json=after,
    )
    session.add(audit)
    session.flush()

    _logger.info(
        "overrides:applied entity_id=%d normalized_id=%d category=%s rule_id=%d",
        entity_id,
        normalized_id,
        category_code,
        rule.id,
    )
    return OverrideResult(
        normalized_transaction_id=normalized_id,
        override_rule_id=rule.id,
        audit_log_id=audit.id,
        before=before,
        after=after,
    )


__all__ = [
    "DEFAULT_OVERRIDE_REASON",
    "OVERRIDE_ACTION",
    "OVERRIDE_TARGET_TYPE",
    "apply_override",
]
