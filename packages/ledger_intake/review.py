"""Review queue: categorizations awaiting (or past) human review."""

from __future__ import annotations

from db.models.finance import (
    AcctCategory,
    AcctNormalizedTransaction,
    AcctRawTransaction,
    AcctTransactionCategorization,
)
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import ReviewItem
from .settings import IntakeSettings


def list_review_queue(
    session: Session,
    *,
    entity_id: int,
    status: str = "needs_review",
    uploaded_file_id: int | None = None,
    limit: int | None = None,
    settings: IntakeSettings | None = None,
) -> list[ReviewItem]:
    """Return categorizations with ``status``, most recently decided first.

    ``limit`` defaults to ``settings.review_queue_default_limit`` and is capped
    at ``settings.review_queue_max_limit``.
    """

    settings = settings or IntakeSettings()
    take = limit if limit is not None else settings.review_queue_default_limit
    take = max(1, min(take, settings.review_queue_max_limit))

    stmt = (
        select(
            AcctTransactionCategorization,
            AcctNormalizedTransaction,
            AcctRawTransaction.uploaded_file_id,
            AcctCategory.name,
        )
        .join(
            AcctNormalizedTransaction,
            AcctNormalizedTransaction.id
            == AcctTransactionCategorization.normalized_transaction_id,
        )
        .join(
            AcctRawTransaction,
            AcctRawTransaction.id == AcctNormalizedTransaction.raw_transaction_id,
        )
        .outerjoin(AcctCategory, AcctCategory.code == AcctTransactionCategorization.category_code)
        .where(
            AcctTransactionCategorization.entity_id == entity_id,
            AcctTransactionCategorization.status == status,
        )
    )
    if uploaded_file_id is not None:
        stmt = stmt.where(AcctRawTransaction.uploaded_file_id == uploaded_file_id)
    stmt = stmt.order_by(
        AcctTransactionCategorization.decided_at.desc(),
        AcctTransactionCategorization.id.desc(),
    ).limit(take)

    items: list[ReviewItem] = []
    for cat, norm, upload_id, category_name in session.execute(stmt):
        items.append(
            ReviewItem(
                categorization_id=cat.id,
                normalized_transaction_id=norm.id,
                uploaded_file_id=upload_id,
                transaction_date=norm.transaction_date,
                amount=norm.amount,
                direction=norm.direction,
                description_clean=norm.description_clean,
                reference_extracted=norm.reference_extracted,
                category_code=cat.category_code,
                category_name=category_name,
                method=cat.method,
                confidence=float(cat.confidence),
                explanation=cat.explanation,
                status=cat.status,
                decided_at=cat.decided_at,
            )
        )
    return items


__all__ = ["list_review_queue"]
