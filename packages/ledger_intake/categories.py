"""Category reference data.

The category table is seeded by migration ``0001_acct_core`` and by
:func:`seed_default_categories` (idempotent; used by the CLI and tests). It is
never written per request.
"""

from __future__ import annotations

from db.models.finance import AcctCategory
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .logging_setup import get_logger
from .models import CategoryInfo

# (code, name, ledger_type); order is the display order.
DEFAULT_CATEGORIES: tuple[tuple[str, str, str], ...] = (
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

_logger = get_logger("ledger_intake.categories")


def seed_default_categories(session: Session) -> int:
    """Insert any missing default categories; return how many were added."""

    existing = set(session.execute(select(AcctCategory.code)).scalars())
    added = 0
    for order, (code, name, ledger_type) in enumerate(DEFAULT_CATEGORIES):
        if code in existing:
            continue
        session.add(AcctCategory(code=code, name=name, ledger_type=ledger_type, sort_order=order))
        added += 1
    if added:
        session.flush()
        _logger.info("categories:seeded added=%d", added)
    return added


def list_categories(session: Session) -> list[CategoryInfo]:
    """Return all categories in display order."""

    rows = session.execute(
        select(AcctCategory).order_by(AcctCategory.sort_order, AcctCategory.code)
    ).scalars()
    return [CategoryInfo(code=r.code, name=r.name, ledger_type=r.ledger_type) for r in rows]


def get_category(session: Session, code: str) -> AcctCategory:
    """Return the category row for ``code`` or raise :class:`NotFoundError`."""

    row = session.get(AcctCategory, code)
    if row is None:
        raise NotFoundError(f"Unknown category: {code!r}")
    return row


__all__ = ["DEFAULT_CATEGORIES", "get_category", "list_categories", "seed_default_categories"]
