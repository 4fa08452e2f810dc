"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.finance`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.finance import (
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

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
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
