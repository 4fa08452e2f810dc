"""Exception types raised by ``ledger_intake``.

Validation problems subclass ``ValueError`` and lookups subclass
``LookupError`` so callers that only know the builtin hierarchy still catch
them.
"""

from __future__ import annotations


class IngestValidationError(ValueError):
    """A candidate or input document failed validation; nothing was written."""


class CsvParseError(IngestValidationError):
    """The CSV document itself is malformed (too short, unterminated quote)."""


class InvalidMatcherError(ValueError):
    """A rule matcher cannot be compiled (bad regex, no constraints)."""


class NotFoundError(LookupError):
    """An entity, transaction, category or upload does not exist in scope."""


__all__ = [
    "CsvParseError",
    "IngestValidationError",
    "InvalidMatcherError",
    "NotFoundError",
]
