# ruff: noqa: I001
"""Accounting intake tables and seed categories.

Revision ID: 0001_acct_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_acct_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True)


def _ts(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def _entity_fk() -> sa.Column:
    return sa.Column(
        "entity_id", sa.BigInteger(), sa.ForeignKey("acct_entities.id"), nullable=False
    )


def upgrade() -> None:
    op.create_table(
        "acct_entities",
        _id(),
        sa.Column("owner_ref", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("created_at"),
    )
    op.create_index("ix_acct_entities_owner", "acct_entities", ["owner_ref"])

    op.create_table(
        "acct_categories",
        sa.Column("code", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("ledger_type", sa.Text(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint(
            "ledger_type IN ('income','expense','asset','liability')",
            name="ck_acct_categories_ledger_type",
        ),
    )

    op.create_table(
        "acct_uploaded_files",
        _id(),
        _entity_fk(),
        sa.Column("content_sha256", sa.CHAR(64), nullable=False),
        sa.Column("storage_uri", sa.Text(), nullable=True),
        sa.Column("source_type", sa.Text(), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=True),
        sa.Column("mime_type", sa.Text(), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'staged'")),
        _ts("uploaded_at"),
        _ts("committed_at", nullable=True),
        sa.UniqueConstraint("entity_id", "content_sha256", name="uq_acct_uploads_entity_sha"),
        sa.CheckConstraint("status IN ('staged','committed')", name="ck_acct_uploads_status"),
    )

    op.create_table(
        "acct_raw_transactions",
        _id(),
        _entity_fk(),
        sa.Column(
            "uploaded_file_id",
            sa.BigInteger(),
            sa.ForeignKey("acct_uploaded_files.id"),
            nullable=True,
        ),
        sa.Column("source_type", sa.Text(), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("direction", sa.Text(), nullable=False),
        sa.Column("raw_description", sa.Text(), nullable=False),
        sa.Column("reference_id", sa.Text(), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint("amount >= 0", name="ck_acct_raw_amount_nonneg"),
        sa.CheckConstraint("direction IN ('inflow','outflow')", name="ck_acct_raw_direction"),
        sa.CheckConstraint(
            "source_type IN ('bank','upi','card','cash')", name="ck_acct_raw_source_type"
        ),
    )
    op.create_index("ix_acct_raw_upload", "acct_raw_transactions", ["uploaded_file_id"])

    op.create_table(
        "acct_normalized_transactions",
        _id(),
        _entity_fk(),
        sa.Column(
            "raw_transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("acct_raw_transactions.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("direction", sa.Text(), nullable=False),
        sa.Column("description_clean", sa.Text(), nullable=False),
        sa.Column("reference_extracted", sa.Text(), nullable=True),
        sa.Column("timezone", sa.Text(), nullable=False),
        sa.Column("normalization_version", sa.Text(), nullable=False),
        sa.Column("normalization_diff", sa.JSON(), nullable=False),
        _ts("created_at"),
        sa.CheckConstraint("amount >= 0", name="ck_acct_norm_amount_nonneg"),
        sa.CheckConstraint("direction IN ('inflow','outflow')", name="ck_acct_norm_direction"),
    )
    op.create_index(
        "ix_acct_norm_entity_description",
        "acct_normalized_transactions",
        ["entity_id", "description_clean"],
    )

    op.create_table(
        "acct_categorization_rules",
        _id(),
        _entity_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("matchers", sa.JSON(), nullable=False),
        sa.Column(
            "category_code", sa.Text(), sa.ForeignKey("acct_categories.code"), nullable=False
        ),
        sa.Column("explanation_template", sa.Text(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_acct_rules_entity", "acct_categorization_rules", ["entity_id", "enabled"])

    op.create_table(
        "acct_user_override_rules",
        _id(),
        _entity_fk(),
        sa.Column("matchers", sa.JSON(), nullable=False),
        sa.Column(
            "category_code", sa.Text(), sa.ForeignKey("acct_categories.code"), nullable=False
        ),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at"),
    )
    op.create_index(
        "ix_acct_overrides_entity", "acct_user_override_rules", ["entity_id", "enabled"]
    )

    op.create_table(
        "acct_transaction_categorizations",
        _id(),
        _entity_fk(),
        sa.Column(
            "normalized_transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("acct_normalized_transactions.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "category_code", sa.Text(), sa.ForeignKey("acct_categories.code"), nullable=True
        ),
        sa.Column("method", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        _ts("decided_at"),
        sa.CheckConstraint(
            "method IN ('manual','rule','history','ai','uncategorized')",
            name="ck_acct_cat_method",
        ),
        sa.CheckConstraint("status IN ('confirmed','needs_review')", name="ck_acct_cat_status"),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_acct_cat_confidence"
        ),
    )
    op.create_index(
        "ix_acct_cat_entity_status",
        "acct_transaction_categorizations",
        ["entity_id", "status"],
    )

    op.create_table(
        "acct_audit_logs",
        _id(),
        _entity_fk(),
        sa.Column("actor_ref", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("target_type", sa.Text(), nullable=False),
        sa.Column("target_id", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_acct_audit_target", "acct_audit_logs", ["target_type", "target_id"])

    # Seed categories from ledger_intake.categories.DEFAULT_CATEGORIES (mirrored here)
    default_categories = (
        ("FOOD_DINING", "Food & Dining", "expense"),
        ("TRAVEL_TRANSPORT", "Travel & Transport", "expense"),
        ("RENT", "Rent", "expense"),
        ("UTILITIES", "Utilities", "expense"),
        ("SALARY_INCOME", "Salary Income", "income"),
        ("BUSINESS_INCOME", "Business Income", "income"),
        ("INTEREST_INCOME", "Interest Income", "income"),
        ("REFUND_REVERSAL", "Refund / Reversal (non-income)", "asset"),
        ("INTERNAL_TRANSFER", "Internal Transfer (own accounts)", "asset"),
        ("PERSONAL_TRANSFER", "Personal Transfer (non-expense)", "asset"),
        ("LOAN_REPAYMENT", "Loan Repayment (principal/EMI)", "liability"),
        ("TAX_PAYMENT", "Taxes Paid", "expense"),
        ("SUBSCRIPTION_EXPENSE", "Subscriptions & SaaS", "expense"),
        ("BUSINESS_EXPENSE", "Office / Business Expense", "expense"),
        ("CAPITAL_EXPENDITURE", "Capital Expenditure", "asset"),
    )
    op.bulk_insert(
        sa.table(
            "acct_categories",
            sa.column("code", sa.Text()),
            sa.column("name", sa.Text()),
            sa.column("ledger_type", sa.Text()),
            sa.column("sort_order", sa.Integer()),
        ),
        [
            {"code": code, "name": name, "ledger_type": ledger_type, "sort_order": i}
            for i, (code, name, ledger_type) in enumerate(default_categories)
        ],
    )


def downgrade() -> None:
    op.drop_table("acct_audit_logs")
    op.drop_table("acct_transaction_categorizations")
    op.drop_table("acct_user_override_rules")
    op.drop_table("acct_categorization_rules")
    op.drop_table("acct_normalized_transactions")
    op.drop_table("acct_raw_transactions")
    op.drop_table("acct_uploaded_files")
    op.drop_table("acct_categories")
    op.drop_table("acct_entities")
