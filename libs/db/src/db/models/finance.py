from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# BIGINT on Postgres; INTEGER on SQLite so the column aliases the rowid.
_ID = BigInteger().with_variant(Integer, "sqlite")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("now()"),
    )


# ---------------------------
# Scope: acct_entities
# ---------------------------


class AcctEntity(Base):
    """A user's isolated book of accounts; every other row is scoped to one."""

    __tablename__ = "acct_entities"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    owner_ref: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (Index("ix_acct_entities_owner", "owner_ref"),)


# ---------------------------
# Reference: acct_categories
# ---------------------------


class AcctCategory(Base):
    __tablename__ = "acct_categories"

    # The code doubles as the category identifier across all tables.
    code: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    ledger_type: Mapped[str] = mapped_column(String, nullable=False)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint(
            "ledger_type IN ('income','expense','asset','liability')",
            name="ck_acct_categories_ledger_type",
        ),
    )


# ---------------------------
# Batches: acct_uploaded_files
# ---------------------------


class AcctUploadedFile(Base):
    __tablename__ = "acct_uploaded_files"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    content_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    storage_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_type: Mapped[str] = mapped_column(String, nullable=False)
    original_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String, nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="staged", server_default=text("'staged'")
    )
    uploaded_at: Mapped[datetime] = _created_at()
    committed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("entity_id", "content_sha256", name="uq_acct_uploads_entity_sha"),
        CheckConstraint("status IN ('staged','committed')", name="ck_acct_uploads_status"),
    )


# ---------------------------
# Core: acct_raw_transactions
# ---------------------------


class AcctRawTransaction(Base):
    """Transaction exactly as ingested. Never mutated after insert."""

    __tablename__ = "acct_raw_transactions"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    uploaded_file_id: Mapped[int | None] = mapped_column(
        _ID, ForeignKey("acct_uploaded_files.id"), nullable=True
    )
    source_type: Mapped[str] = mapped_column(String, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    raw_description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_acct_raw_amount_nonneg"),
        CheckConstraint("direction IN ('inflow','outflow')", name="ck_acct_raw_direction"),
        CheckConstraint(
            "source_type IN ('bank','upi','card','cash')", name="ck_acct_raw_source_type"
        ),
        Index("ix_acct_raw_upload", "uploaded_file_id"),
    )


# ---------------------------
# Derived: acct_normalized_transactions
# ---------------------------


class AcctNormalizedTransaction(Base):
    __tablename__ = "acct_normalized_transactions"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    raw_transaction_id: Mapped[int] = mapped_column(
        _ID, ForeignKey("acct_raw_transactions.id"), nullable=False, unique=True
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    description_clean: Mapped[str] = mapped_column(Text, nullable=False)
    reference_extracted: Mapped[str | None] = mapped_column(String, nullable=True)
    timezone: Mapped[str] = mapped_column(String, nullable=False)
    normalization_version: Mapped[str] = mapped_column(String, nullable=False)
    normalization_diff: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_acct_norm_amount_nonneg"),
        CheckConstraint("direction IN ('inflow','outflow')", name="ck_acct_norm_direction"),
        # History lookups match on identical cleaned descriptions within an entity.
        Index("ix_acct_norm_entity_description", "entity_id", "description_clean"),
    )


# ---------------------------
# Rules
# ---------------------------


class AcctCategorizationRule(Base):
    __tablename__ = "acct_categorization_rules"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Ascending: lower numbers win.
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    matchers: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    category_code: Mapped[str] = mapped_column(
        String, ForeignKey("acct_categories.code"), nullable=False
    )
    explanation_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (Index("ix_acct_rules_entity", "entity_id", "enabled"),)


class AcctUserOverrideRule(Base):
    """Rule synthesized from a manual correction; outranks every system rule."""

    __tablename__ = "acct_user_override_rules"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    matchers: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    category_code: Mapped[str] = mapped_column(
        String, ForeignKey("acct_categories.code"), nullable=False
    )
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (Index("ix_acct_overrides_entity", "entity_id", "enabled"),)


# ---------------------------
# Decisions: acct_transaction_categorizations
# ---------------------------


class AcctTransactionCategorization(Base):
    __tablename__ = "acct_transaction_categorizations"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    normalized_transaction_id: Mapped[int] = mapped_column(
        _ID, ForeignKey("acct_normalized_transactions.id"), nullable=False, unique=True
    )
    category_code: Mapped[str | None] = mapped_column(
        String, ForeignKey("acct_categories.code"), nullable=True
    )
    method: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Numeric(3, 2, asdecimal=False), nullable=False)
    explanation: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    decided_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        CheckConstraint(
            "method IN ('manual','rule','history','ai','uncategorized')",
            name="ck_acct_cat_method",
        ),
        CheckConstraint("status IN ('confirmed','needs_review')", name="ck_acct_cat_status"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_acct_cat_confidence"),
        Index("ix_acct_cat_entity_status", "entity_id", "status"),
    )


# ---------------------------
# Append-only: acct_audit_logs
# ---------------------------


class AcctAuditLog(Base):
    __tablename__ = "acct_audit_logs"

    id: Mapped[int] = mapped_column(_ID, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(_ID, ForeignKey("acct_entities.id"), nullable=False)
    actor_ref: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    target_type: Mapped[str] = mapped_column(String, nullable=False)
    target_id: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (Index("ix_acct_audit_target", "target_type", "target_id"),)
