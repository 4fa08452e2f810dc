"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the accounting intake models used by ``ledger_intake``.
"""

from .finance import (
    AcctAuditLog,
    AcctCategorizationRule,
    AcctCategory,
    AcctEntity,
    AcctNormalizedTransaction,
    AcctRawTransaction,
    AcctTransactionCategorization,
    AcctUploadedFile,
    AcctUserOverrideRule,
    Base,
)

__all__ = [
    "Base",
    "AcctAuditLog",
    "AcctCategorizationRule",
    "AcctCategory",
    "AcctEntity",
    "AcctNormalizedTransaction",
    "AcctRawTransaction",
    "AcctTransactionCategorization",
    "AcctUploadedFile",
    "AcctUserOverrideRule",
]
