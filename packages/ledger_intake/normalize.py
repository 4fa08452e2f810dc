"""Deterministic normalization of raw transactions.

``normalize_raw_transaction`` is a pure function: same input, same output.
Applying it to an already-normalized description yields the same
``description_clean`` and ``reference_extracted``, so normalized rows can be
recomputed from raw rows at any time (bump ``NORMALIZATION_VERSION`` when the
rules change).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from .settings import DEFAULT_TIMEZONE

NORMALIZATION_VERSION = "acct_norm_v1"

_WHITESPACE_RE = re.compile(r"\s+")

# Tried in order; the first match's group 1 wins.
_REFERENCE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bUTR[:\s-]*([A-Z0-9]{8,22})\b",
        r"\bRRN[:\s-]*([0-9]{10,18})\b",
        r"\bUPI\s*Ref[:\s-]*([0-9]{10,20})\b",
        r"\bRef(?:erence)?[:\s-]*([A-Z0-9-]{6,30})\b",
    )
)


@dataclass(frozen=True, slots=True)
class NormalizedPayload:
    description_clean: str
    reference_extracted: str | None
    timezone: str
    normalization_version: str
    diff: dict[str, Any]


def clean_description(description: str) -> str:
    """Collapse whitespace runs to a single space and trim."""

    return _WHITESPACE_RE.sub(" ", description or "").strip()


def extract_reference(description: str, reference_id: str | None = None) -> str | None:
    """Return ``reference_id`` when present, else the first reference found in text."""

    if reference_id is not None and reference_id.strip():
        return reference_id.strip()
    for pattern in _REFERENCE_PATTERNS:
        m = pattern.search(description or "")
        if m:
            return m.group(1)
    return None


def normalize_raw_transaction(
    raw_description: str,
    reference_id: str | None = None,
    *,
    timezone: str = DEFAULT_TIMEZONE,
) -> NormalizedPayload:
    """Normalize the description/reference of one raw transaction.

    Parameters
    ----------
    raw_description:
        Description exactly as ingested.
    reference_id:
        Reference supplied by the source, if any; it takes precedence over
        references found in the description.
    timezone:
        Timezone tag recorded with the normalized row.

    Returns
    -------
    NormalizedPayload
        Cleaned fields plus a ``diff`` describing what changed.
    """

    description_clean = clean_description(raw_description)
    reference = extract_reference(description_clean, reference_id)
    diff: dict[str, Any] = {
        "timezone": timezone,
        "normalization_version": NORMALIZATION_VERSION,
        "description": {"from": raw_description, "to": description_clean},
        "reference_extracted": reference,
    }
    return NormalizedPayload(
        description_clean=description_clean,
        reference_extracted=reference,
        timezone=timezone,
        normalization_version=NORMALIZATION_VERSION,
        diff=diff,
    )


__all__ = [
    "NORMALIZATION_VERSION",
    "NormalizedPayload",
    "clean_description",
    "extract_reference",
    "normalize_raw_transaction",
]
