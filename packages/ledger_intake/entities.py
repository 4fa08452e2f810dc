"""Entity (book of accounts) resolution for an owner."""

from __future__ import annotations

from db.models.finance import AcctEntity
from sqlalchemy import select
from sqlalchemy.orm import Session

from .logging_setup import get_logger

DEFAULT_ENTITY_NAME = "Personal"

_logger = get_logger("ledger_intake.entities")


def ensure_default_entity(session: Session, owner_ref: str) -> AcctEntity:
    """Return the owner's default entity, creating ``Personal`` on first use."""

    existing = session.execute(
        select(AcctEntity)
        .where(AcctEntity.owner_ref == owner_ref, AcctEntity.is_default.is_(True))
        .order_by(AcctEntity.id)
    ).scalars().first()
    if existing is not None:
        return existing
    row = AcctEntity(owner_ref=owner_ref, name=DEFAULT_ENTITY_NAME, is_default=True)
    session.add(row)
    session.flush()
    _logger.info("entities:created_default entity_id=%d", row.id)
    return row


def resolve_entity(
    session: Session, owner_ref: str, entity_id: int | None = None
) -> AcctEntity | None:
    """Return ``entity_id`` when the owner holds it, or the default entity when omitted."""

    if entity_id is None:
        return ensure_default_entity(session, owner_ref)
    return session.execute(
        select(AcctEntity).where(AcctEntity.id == entity_id, AcctEntity.owner_ref == owner_ref)
    ).scalars().first()


__all__ = ["DEFAULT_ENTITY_NAME", "ensure_default_entity", "resolve_entity"]
