"""Adapter for bank statement CSV uploads.

Expected header (case-insensitive, any order):
``date, amount, direction, description[, reference|ref]``

The upload is identified by the SHA-256 of its raw bytes, so re-uploading the
same file is detected even when it is renamed.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

from ...csv_parser import parse_csv_candidates
from ...errors import CsvParseError
from ...models import CandidateTransaction


@dataclass(frozen=True, slots=True)
class CsvStatement:
    content_sha256: str
    size_bytes: int
    original_name: str | None
    candidates: tuple[CandidateTransaction, ...]


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def decode_csv_bytes(content: bytes) -> str:
    """Decode UTF-8 (a leading BOM is dropped)."""

    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise CsvParseError(f"CSV is not valid UTF-8: {e}") from e


def load_statement(content: bytes, *, original_name: str | None = None) -> CsvStatement:
    """Hash, decode and strictly parse an uploaded CSV document."""

    return CsvStatement(
        content_sha256=sha256_hex(content),
        size_bytes=len(content),
        original_name=original_name,
        candidates=tuple(parse_csv_candidates(decode_csv_bytes(content))),
    )


def load_statement_file(path: str | PathLike[str]) -> CsvStatement:
    p = Path(path)
    return load_statement(p.read_bytes(), original_name=p.name)


__all__ = [
    "CsvStatement",
    "decode_csv_bytes",
    "load_statement",
    "load_statement_file",
    "sha256_hex",
]
