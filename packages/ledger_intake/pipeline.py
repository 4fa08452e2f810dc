"""Five-stage classification pipeline.

Stages run in order and the first one that produces a decision wins:

1. learned override rules   -> ``manual``, 1.0, confirmed
2. system rules             -> ``rule``, 0.85, confirmed
3. same-description history -> ``history``, 0.7, needs_review
4. AI classification        -> ``ai``, model confidence; confirmed at >= 0.8,
                               needs_review in [0.5, 0.8), skipped below 0.5
5. uncategorized            -> no category, 0.0, needs_review

Only rules and history rows of the transaction's own entity are consulted.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from functools import partial
from typing import Any

from db.models.finance import AcctNormalizedTransaction, AcctTransactionCategorization
from sqlalchemy import select
from sqlalchemy.orm import Session

from .ai_classifier import AiClassificationRequest, classify_with_ai
from .logging_setup import get_logger
from .models import (
    AiMatched,
    AiOutcome,
    AiServiceUnavailable,
    CategoryInfo,
    Decision,
    TransactionView,
)
from .rules import RuleSet
from .settings import IntakeSettings

OVERRIDE_CONFIDENCE: float = 1.0
RULE_CONFIDENCE: float = 0.85
HISTORY_CONFIDENCE: float = 0.7
AI_MIN_CONFIDENCE: float = 0.5
AI_CONFIRM_CONFIDENCE: float = 0.8

_OVERRIDE_EXPLANATION = "Matched a user override rule based on prior correction."
_RULE_EXPLANATION = "Matched an explicit categorization rule."
_HISTORY_EXPLANATION = (
    "Matched your historical categorization for similar transactions (same description)."
)
_UNCATEGORIZED_EXPLANATION = "No rule or prior behavior matched. Requires manual review."

type AiClassifier = Callable[[AiClassificationRequest], AiOutcome]

_logger = get_logger("ledger_intake.pipeline")


def fetch_history(session: Session, txn: TransactionView, *, limit: int) -> list[dict[str, Any]]:
    """Return up to ``limit`` same-description rows, newest first.

    The transaction itself is excluded. Rows that are uncategorized or not yet
    classified are included with ``category_code`` set to ``None``; they take a
    slot in the window and serve as amount context for the AI stage.
    """

    stmt = (
        select(
            AcctNormalizedTransaction.id,
            AcctNormalizedTransaction.transaction_date,
            AcctNormalizedTransaction.amount,
            AcctTransactionCategorization.category_code,
        )
        .outerjoin(
            AcctTransactionCategorization,
            AcctTransactionCategorization.normalized_transaction_id
            == AcctNormalizedTransaction.id,
        )
        .where(
            AcctNormalizedTransaction.entity_id == txn.entity_id,
            AcctNormalizedTransaction.description_clean == txn.description_clean,
            AcctNormalizedTransaction.id != txn.normalized_id,
        )
        .order_by(
            AcctNormalizedTransaction.transaction_date.desc(),
            AcctNormalizedTransaction.id.desc(),
        )
        .limit(limit)
    )
    return [
        {
            "normalized_id": row.id,
            "date": row.transaction_date.isoformat(),
            "amount": row.amount,
            "category_code": row.category_code,
        }
        for row in session.execute(stmt)
    ]


def pick_history_category(history: Sequence[dict[str, Any]]) -> str | None:
    """Most frequent category; ties go to the category seen most recently.

    ``history`` must be ordered newest first. Rows without a category are ignored.
    """

    counts: Counter[str] = Counter()
    first_seen: dict[str, int] = {}
    for idx, row in enumerate(history):
        code = row["category_code"]
        if code is None:
            continue
        counts[code] += 1
        first_seen.setdefault(code, idx)
    if not counts:
        return None
    return max(counts, key=lambda c: (counts[c], -first_seen[c]))


def _ai_decision(outcome: AiOutcome) -> Decision | None:
    if not isinstance(outcome, AiMatched):
        return None
    if outcome.confidence < AI_MIN_CONFIDENCE:
        return None
    status = "confirmed" if outcome.confidence >= AI_CONFIRM_CONFIDENCE else "needs_review"
    return Decision(
        category_code=outcome.category_code,
        method="ai",
        confidence=outcome.confidence,
        explanation=f"AI suggestion: {outcome.explanation}",
        status=status,
    )


def classify_transaction(
    session: Session,
    txn: TransactionView,
    *,
    rule_set: RuleSet,
    categories: Sequence[CategoryInfo],
    settings: IntakeSettings,
    ai_classifier: AiClassifier | None = None,
) -> Decision:
    """Run the stages for one transaction and return the decision.

    Parameters
    ----------
    session:
        Read-only use: history lookups.
    txn:
        The normalized transaction to classify.
    rule_set:
        Snapshot of the entity's compiled rules (see :class:`~ledger_intake.rules.RuleSetCache`).
    categories:
        Allowed categories passed to the AI stage.
    settings:
        Window sizes and AI call settings.
    ai_classifier:
        Callable for stage 4; defaults to :func:`~ledger_intake.ai_classifier.classify_with_ai`.

    Returns
    -------
    Decision
    """

    if rule_set.entity_id != txn.entity_id:
        raise ValueError("rule_set belongs to a different entity")

    for rule in rule_set.overrides:
        if rule.matcher.matches(txn):
            _logger.debug("pipeline:stage_hit stage=override id=%d", txn.normalized_id)
            return Decision(
                category_code=rule.category_code,
                method="manual",
                confidence=OVERRIDE_CONFIDENCE,
                explanation=_OVERRIDE_EXPLANATION,
                status="confirmed",
            )

    for rule in rule_set.system:
        if rule.matcher.matches(txn):
            _logger.debug("pipeline:stage_hit stage=rule id=%d", txn.normalized_id)
            return Decision(
                category_code=rule.category_code,
                method="rule",
                confidence=RULE_CONFIDENCE,
                explanation=rule.explanation or _RULE_EXPLANATION,
                status="confirmed",
            )

    window = max(settings.history_window, settings.ai_history_window)
    prior = fetch_history(session, txn, limit=window)
    history_code = pick_history_category(prior[: settings.history_window])
    if history_code is not None:
        _logger.debug("pipeline:stage_hit stage=history id=%d", txn.normalized_id)
        return Decision(
            category_code=history_code,
            method="history",
            confidence=HISTORY_CONFIDENCE,
            explanation=_HISTORY_EXPLANATION,
            status="needs_review",
        )

    classifier = ai_classifier or partial(classify_with_ai, settings=settings)
    request = AiClassificationRequest(
        description=txn.description_clean,
        direction=txn.direction,
        amount=txn.amount,
        reference=txn.reference_extracted,
        allowed_categories=tuple(categories),
        history=tuple(
            {k: v for k, v in row.items() if k != "normalized_id"}
            for row in prior[: settings.ai_history_window]
        ),
    )
    outcome: AiOutcome
    try:
        outcome = classifier(request)
    except Exception as e:  # noqa: BLE001 - a failing classifier degrades to review
        _logger.error(
            "pipeline:ai_failed id=%d error=%s", txn.normalized_id, type(e).__name__
        )
        outcome = AiServiceUnavailable(error=str(e))
    decision = _ai_decision(outcome)
    if decision is not None:
        _logger.debug("pipeline:stage_hit stage=ai id=%d", txn.normalized_id)
        return decision
    _logger.debug(
        "pipeline:stage_hit stage=uncategorized id=%d ai_outcome=%s",
        txn.normalized_id,
        type(outcome).__name__,
    )
    return Decision(
        category_code=None,
        method="uncategorized",
        confidence=0.0,
        explanation=_UNCATEGORIZED_EXPLANATION,
        status="needs_review",
    )


__all__ = [
    "AI_CONFIRM_CONFIDENCE",
    "AI_MIN_CONFIDENCE",
    "AiClassifier",
    "HISTORY_CONFIDENCE",
    "OVERRIDE_CONFIDENCE",
    "RULE_CONFIDENCE",
    "classify_transaction",
    "fetch_history",
    "pick_history_category",
]
