"""Rule matchers: a small conjunctive predicate over a normalized transaction.

Every constraint that is set must hold (AND semantics); unset constraints are
ignored. Description checks run against ``description_clean`` and are
case-insensitive; ``reference_equals`` is exact.

Regexes are compiled once when a matcher is compiled. :func:`compile_matcher`
rejects unusable matchers (used when rules are created);
:func:`compile_matcher_or_none` is used when loading stored rules so that a
bad stored rule is skipped instead of breaking classification.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import InvalidMatcherError
from .logging_setup import get_logger
from .models import Direction, TransactionView

_logger = get_logger("ledger_intake.matcher")


class MatcherSpec(BaseModel):
    """Stored/JSON form of a matcher (persisted in the ``matchers`` column)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    direction: Direction | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    description_contains: str | None = None
    description_regex: str | None = None
    reference_equals: str | None = None

    @field_validator(
        "description_contains", "description_regex", "reference_equals", mode="before"
    )
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.direction,
                self.min_amount,
                self.max_amount,
                self.description_contains,
                self.description_regex,
                self.reference_equals,
            )
        )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(frozen=True, slots=True)
class CompiledMatcher:
    spec: MatcherSpec
    regex: re.Pattern[str] | None
    contains_folded: str | None

    def matches(self, txn: TransactionView) -> bool:
        spec = self.spec
        if spec.direction is not None and txn.direction != spec.direction:
            return False
        if spec.min_amount is not None and txn.amount < spec.min_amount:
            return False
        if spec.max_amount is not None and txn.amount > spec.max_amount:
            return False
        if (
            self.contains_folded is not None
            and self.contains_folded not in txn.description_clean.casefold()
        ):
            return False
        if self.regex is not None and self.regex.search(txn.description_clean) is None:
            return False
        if spec.reference_equals is not None and txn.reference_extracted != spec.reference_equals:
            return False
        return True


def compile_matcher(spec: MatcherSpec | Mapping[str, Any]) -> CompiledMatcher:
    """Validate and compile a matcher.

    Raises
    ------
    InvalidMatcherError
        The matcher has no constraints, an unparsable regex, a min amount
        above its max amount, or fields of the wrong type.
    """

    if not isinstance(spec, MatcherSpec):
        try:
            spec = MatcherSpec.model_validate(dict(spec))
        except ValidationError as e:
            raise InvalidMatcherError(f"Invalid matcher: {e}") from e
    if spec.is_empty():
        raise InvalidMatcherError("Matcher must set at least one constraint")
    if (
        spec.min_amount is not None
        and spec.max_amount is not None
        and spec.min_amount > spec.max_amount
    ):
        raise InvalidMatcherError("min_amount must not exceed max_amount")

    regex: re.Pattern[str] | None = None
    if spec.description_regex is not None:
        try:
            regex = re.compile(spec.description_regex, re.IGNORECASE)
        except re.error as e:
            raise InvalidMatcherError(
                f"Invalid description_regex {spec.description_regex!r}: {e}"
            ) from e

    contains = spec.description_contains.casefold() if spec.description_contains else None
    return CompiledMatcher(spec=spec, regex=regex, contains_folded=contains)


def compile_matcher_or_none(
    raw: Mapping[str, Any] | None, *, rule_ref: str = "?"
) -> CompiledMatcher | None:
    """Compile a stored matcher, logging and returning ``None`` when unusable."""

    try:
        return compile_matcher(raw or {})
    except InvalidMatcherError as e:
        _logger.warning("matcher:skip_invalid rule=%s error=%s", rule_ref, e)
        return None


__all__ = [
    "CompiledMatcher",
    "MatcherSpec",
    "compile_matcher",
    "compile_matcher_or_none",
]
