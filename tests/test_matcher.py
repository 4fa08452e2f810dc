from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from ledger_intake.errors import InvalidMatcherError
from ledger_intake.matcher import MatcherSpec, compile_matcher, compile_matcher_or_none
from ledger_intake.models import TransactionView
from ledger_intake.rules import DEFAULT_RULES


def _txn(
    description: str,
    *,
    direction: str = "outflow",
    amount: str = "100.00",
    reference: str | None = None,
) -> TransactionView:
    return TransactionView(
        normalized_id=1,
        entity_id=1,
        transaction_date=dt.date(2024, 6, 1),
        amount=Decimal(amount),
        direction=direction,
        description_clean=description,
        reference_extracted=reference,
    )


def test_all_constraints_must_hold() -> None:
    food = next(r for r in DEFAULT_RULES if r["category_code"] == "FOOD_DINING")
    m = compile_matcher(food["matchers"])

    assert m.matches(_txn("SWIGGY ORDER 55"))
    # A refund is an inflow: the description matches but the direction does not
    assert not m.matches(_txn("SWIGGY REFUND 55", direction="inflow"))


def test_contains_is_case_insensitive() -> None:
    m = compile_matcher({"description_contains": "Acme Corp"})

    assert m.matches(_txn("NEFT ACME CORP SALARY"))
    assert not m.matches(_txn("NEFT ACME SALARY"))


def test_regex_is_case_insensitive_search() -> None:
    m = compile_matcher({"description_regex": r"\brent\b"})

    assert m.matches(_txn("June Rent to landlord"))
    assert not m.matches(_txn("PARENTS GIFT"))


def test_amount_bounds_are_inclusive() -> None:
    m = compile_matcher({"min_amount": "100", "max_amount": "200.50"})

    assert m.matches(_txn("X", amount="100.00"))
    assert m.matches(_txn("X", amount="200.50"))
    assert not m.matches(_txn("X", amount="99.99"))
    assert not m.matches(_txn("X", amount="200.51"))


def test_reference_equals_is_exact() -> None:
    m = compile_matcher({"reference_equals": "REF998877"})

    assert m.matches(_txn("X", reference="REF998877"))
    assert not m.matches(_txn("X", reference="ref998877"))
    assert not m.matches(_txn("X"))


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"description_contains": "   ", "description_regex": ""},
        {"unknown_key": "ignored"},
    ],
)
def test_empty_matchers_are_rejected(raw: dict) -> None:
    with pytest.raises(InvalidMatcherError, match="at least one constraint"):
        compile_matcher(raw)


@pytest.mark.parametrize(
    "raw",
    [
        {"description_regex": "(unclosed"},
        {"min_amount": "10", "max_amount": "5"},
        {"direction": "sideways"},
        {"min_amount": "lots"},
    ],
)
def test_unusable_matchers_are_rejected(raw: dict) -> None:
    with pytest.raises(InvalidMatcherError):
        compile_matcher(raw)


def test_stored_bad_matcher_is_skipped() -> None:
    assert compile_matcher_or_none({"description_regex": "("}, rule_ref="rule:7") is None
    assert compile_matcher_or_none(None) is None
    assert compile_matcher_or_none({"direction": "inflow"}) is not None


def test_to_json_drops_unset_fields() -> None:
    spec = MatcherSpec(direction="outflow", min_amount=Decimal("10.5"))

    assert spec.to_json() == {"direction": "outflow", "min_amount": "10.5"}


def test_every_seed_rule_compiles() -> None:
    for rule in DEFAULT_RULES:
        compile_matcher(rule["matchers"])
