"""Strict CSV parsing for bank statement exports.

The document is split into non-empty trimmed lines (quoted fields cannot span
lines). Each line is tokenized with the standard ``csv`` module in strict
mode: double quotes escape as ``""`` and an unterminated quote is an error.

Header matching is case-insensitive. Required columns: ``date``, ``amount``,
``direction``, ``description``; ``reference`` (or ``ref``) is optional. Any
error aborts the whole document.
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass

from .errors import CsvParseError, IngestValidationError
from .logging_setup import get_logger
from .models import CandidateTransaction, parse_amount, parse_date, parse_direction

REQUIRED_COLUMNS: tuple[str, ...] = ("date", "amount", "direction", "description")
_REFERENCE_COLUMNS: tuple[str, ...] = ("reference", "ref")

_LINE_SPLIT_RE = re.compile(r"\r?\n")

_logger = get_logger("ledger_intake.csv_parser")


@dataclass(frozen=True, slots=True)
class ParsedCsv:
    headers: tuple[str, ...]
    rows: tuple[dict[str, str], ...]


def _split_line(line: str, *, line_no: int) -> list[str]:
    reader = csv.reader([line], strict=True, skipinitialspace=True)
    try:
        cells = next(reader, [])
    except csv.Error as e:
        raise CsvParseError(f"Malformed CSV at line {line_no}: {e}") from e
    return [c.strip() for c in cells]


def parse_csv_strict(text: str) -> ParsedCsv:
    """Tokenize ``text`` into lower-cased headers and row mappings.

    Raises
    ------
    CsvParseError
        Fewer than two non-empty lines, or a line with an unterminated quote.
    """

    lines = [ln.strip() for ln in _LINE_SPLIT_RE.split(text or "")]
    lines = [ln for ln in lines if ln]
    if len(lines) < 2:
        raise CsvParseError("CSV must include a header and at least 1 row")

    headers = tuple(h.lower() for h in _split_line(lines[0], line_no=1))
    rows: list[dict[str, str]] = []
    for line_no, line in enumerate(lines[1:], start=2):
        cells = _split_line(line, line_no=line_no)
        rows.append({h: (cells[i] if i < len(cells) else "") for i, h in enumerate(headers)})
    return ParsedCsv(headers=headers, rows=tuple(rows))


def csv_rows_to_candidates(parsed: ParsedCsv) -> list[CandidateTransaction]:
    """Validate parsed rows and build candidates; the first bad row aborts."""

    missing = [c for c in REQUIRED_COLUMNS if c not in parsed.headers]
    if missing:
        raise IngestValidationError(f"CSV missing required columns: {', '.join(missing)}")
    ref_col = next((c for c in _REFERENCE_COLUMNS if c in parsed.headers), None)

    out: list[CandidateTransaction] = []
    for row_no, row in enumerate(parsed.rows, start=2):
        try:
            txn_date = parse_date(row["date"])
            amount = parse_amount(row["amount"])
            direction = parse_direction(row["direction"])
        except IngestValidationError as e:
            raise IngestValidationError(f"Row {row_no}: {e}") from None
        description = row["description"].strip()
        if not description:
            raise IngestValidationError(f"Row {row_no}: description is required")
        reference = row.get(ref_col, "").strip() if ref_col else ""
        out.append(
            CandidateTransaction(
                date=txn_date,
                amount=amount,
                direction=direction,
                description=description,
                reference=reference or None,
                raw={"row": row_no, "cells": row},
            )
        )
    _logger.debug("csv_parser:candidates rows=%d", len(out))
    return out


def parse_csv_candidates(text: str) -> list[CandidateTransaction]:
    """``parse_csv_strict`` followed by ``csv_rows_to_candidates``."""

    return csv_rows_to_candidates(parse_csv_strict(text))


__all__ = [
    "REQUIRED_COLUMNS",
    "ParsedCsv",
    "csv_rows_to_candidates",
    "parse_csv_candidates",
    "parse_csv_strict",
]
