"""Categorization rules: seeding, creation and per-entity rule-set loading.

Two rule families feed the pipeline:

- learned override rules (``acct_user_override_rules``), newest first;
- system rules (``acct_categorization_rules``), by ascending priority, then
  creation time.

:class:`RuleSetCache` holds compiled rule sets per entity. A batch takes one
snapshot at its start and classifies every row against it, so rule changes
made while a batch runs apply from the next batch on. Mutations call
:meth:`RuleSetCache.invalidate` once their transaction has committed.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from db.models.finance import AcctCategorizationRule, AcctUserOverrideRule
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .categories import get_category
from .errors import NotFoundError
from .logging_setup import get_logger
from .matcher import CompiledMatcher, MatcherSpec, compile_matcher, compile_matcher_or_none

_logger = get_logger("ledger_intake.rules")

_CACHE_MAX_AGE_SEC: float = 60.0

# Seeded per entity the first time it ingests, when it has no rules at all.
DEFAULT_RULES: tuple[Mapping[str, Any], ...] = (
    {
        "name": "Swiggy/Zomato -> Food & Dining",
        "priority": 10,
        "matchers": {"direction": "outflow", "description_regex": r"(swiggy|zomato|ubereats)"},
        "category_code": "FOOD_DINING",
        "explanation_template": "Matched food delivery merchant keyword in description.",
    },
    {
        "name": "Restaurants/Cafe -> Food & Dining",
        "priority": 20,
        "matchers": {"direction": "outflow", "description_regex": r"(restaurant|cafe|coffee)"},
        "category_code": "FOOD_DINING",
        "explanation_template": "Matched restaurant/cafe keyword in description.",
    },
    {
        "name": "Uber/Ola/IRCTC -> Travel & Transport",
        "priority": 20,
        "matchers": {"direction": "outflow", "description_regex": r"(uber|ola|irctc)"},
        "category_code": "TRAVEL_TRANSPORT",
        "explanation_template": "Matched transport/rail merchant keyword in description.",
    },
    {
        "name": "Airtel/Jio/VI -> Utilities",
        "priority": 20,
        "matchers": {
            "direction": "outflow",
            "description_regex": r"(airtel|jio|vodafone|vi\b)",
        },
        "category_code": "UTILITIES",
        "explanation_template": "Matched telecom utility keyword in description.",
    },
    {
        "name": "Electricity/Water/Gas -> Utilities",
        "priority": 30,
        "matchers": {
            "direction": "outflow",
            "description_regex": r"(electricity|power|water|gas)",
        },
        "category_code": "UTILITIES",
        "explanation_template": "Matched utility keyword in description.",
    },
    {
        "name": "Rent -> Rent",
        "priority": 30,
        "matchers": {"direction": "outflow", "description_regex": r"\brent\b"},
        "category_code": "RENT",
        "explanation_template": "Matched rent keyword in description.",
    },
    {
        "name": "Bank interest -> Interest Income (keyword)",
        "priority": 25,
        "matchers": {"direction": "inflow", "description_regex": r"\b(interest|int\b|intrst)\b"},
        "category_code": "INTEREST_INCOME",
        "explanation_template": "Matched bank interest keyword; still review if ambiguous.",
    },
    {
        "name": "Tax payment -> Taxes Paid (keyword)",
        "priority": 25,
        "matchers": {
            "direction": "outflow",
            "description_regex": r"\b(income\s*tax|it\s*dept|gst|tds|challan)\b",
        },
        "category_code": "TAX_PAYMENT",
        "explanation_template": "Matched tax authority/challan keyword; still review if ambiguous.",
    },
)


@dataclass(frozen=True, slots=True)
class LoadedRule:
    rule_id: int
    category_code: str
    matcher: CompiledMatcher
    explanation: str | None = None


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Compiled, ordered rules for one entity (immutable snapshot)."""

    entity_id: int
    overrides: tuple[LoadedRule, ...]
    system: tuple[LoadedRule, ...]


# ---- Mutations ---------------------------------------------------------------


def ensure_seed_rules_for_entity(session: Session, entity_id: int) -> int:
    """Seed :data:`DEFAULT_RULES` for an entity that has no rules yet."""

    existing = session.execute(
        select(func.count())
        .select_from(AcctCategorizationRule)
        .where(AcctCategorizationRule.entity_id == entity_id)
    ).scalar_one()
    if existing:
        return 0
    for spec in DEFAULT_RULES:
        session.add(
            AcctCategorizationRule(
                entity_id=entity_id,
                name=spec["name"],
                priority=spec["priority"],
                enabled=True,
                matchers=dict(spec["matchers"]),
                category_code=spec["category_code"],
                explanation_template=spec["explanation_template"],
            )
        )
    session.flush()
    _logger.info("rules:seeded entity_id=%d count=%d", entity_id, len(DEFAULT_RULES))
    return len(DEFAULT_RULES)


def create_categorization_rule(
    session: Session,
    *,
    entity_id: int,
    name: str,
    category_code: str,
    matchers: MatcherSpec | Mapping[str, Any],
    priority: int = 100,
    explanation_template: str | None = None,
) -> AcctCategorizationRule:
    """Validate and persist a system rule.

    Raises :class:`~ledger_intake.errors.InvalidMatcherError` for an unusable
    matcher and :class:`~ledger_intake.errors.NotFoundError` for an unknown
    category. Nothing is written in either case.
    """

    compiled = compile_matcher(matchers)
    get_category(session, category_code)
    row = AcctCategorizationRule(
        entity_id=entity_id,
        name=name.strip() or category_code,
        priority=priority,
        enabled=True,
        matchers=compiled.spec.to_json(),
        category_code=category_code,
        explanation_template=explanation_template,
    )
    session.add(row)
    session.flush()
    _logger.info(
        "rules:created entity_id=%d rule_id=%d priority=%d category=%s",
        entity_id,
        row.id,
        priority,
        category_code,
    )
    return row


def set_rule_enabled(session: Session, *, entity_id: int, rule_id: int, enabled: bool) -> None:
    row = session.get(AcctCategorizationRule, rule_id)
    if row is None or row.entity_id != entity_id:
        raise NotFoundError(f"Unknown rule: {rule_id}")
    row.enabled = enabled
    session.flush()


# ---- Loading -----------------------------------------------------------------


def load_rule_set(session: Session, entity_id: int) -> RuleSet:
    """Load and compile the enabled rules of ``entity_id`` in evaluation order."""

    override_rows = session.execute(
        select(AcctUserOverrideRule)
        .where(
            AcctUserOverrideRule.entity_id == entity_id,
            AcctUserOverrideRule.enabled.is_(True),
        )
        .order_by(AcctUserOverrideRule.created_at.desc(), AcctUserOverrideRule.id.desc())
    ).scalars()
    overrides: list[LoadedRule] = []
    for o in override_rows:
        m = compile_matcher_or_none(o.matchers, rule_ref=f"override:{o.id}")
        if m is not None:
            overrides.append(LoadedRule(rule_id=o.id, category_code=o.category_code, matcher=m))

    system_rows = session.execute(
        select(AcctCategorizationRule)
        .where(
            AcctCategorizationRule.entity_id == entity_id,
            AcctCategorizationRule.enabled.is_(True),
        )
        .order_by(
            AcctCategorizationRule.priority.asc(),
            AcctCategorizationRule.created_at.asc(),
            AcctCategorizationRule.id.asc(),
        )
    ).scalars()
    system: list[LoadedRule] = []
    for r in system_rows:
        m = compile_matcher_or_none(r.matchers, rule_ref=f"rule:{r.id}")
        if m is not None:
            system.append(
                LoadedRule(
                    rule_id=r.id,
                    category_code=r.category_code,
                    matcher=m,
                    explanation=r.explanation_template,
                )
            )

    return RuleSet(entity_id=entity_id, overrides=tuple(overrides), system=tuple(system))


class RuleSetCache:
    """Thread-safe per-entity cache of compiled rule sets.

    Entries expire after ``max_age_sec`` so processes that did not perform a
    mutation themselves eventually observe it.
    """

    def __init__(self, *, max_age_sec: float = _CACHE_MAX_AGE_SEC) -> None:
        self._max_age_sec = max_age_sec
        self._lock = threading.Lock()
        self._entries: dict[int, tuple[float, RuleSet]] = {}

    def get(self, session: Session, entity_id: int) -> RuleSet:
        now = time.monotonic()
        with self._lock:
            hit = self._entries.get(entity_id)
            if hit is not None and now - hit[0] < self._max_age_sec:
                return hit[1]
        rule_set = load_rule_set(session, entity_id)
        with self._lock:
            self._entries[entity_id] = (now, rule_set)
        _logger.debug(
            "rules:loaded entity_id=%d overrides=%d system=%d",
            entity_id,
            len(rule_set.overrides),
            len(rule_set.system),
        )
        return rule_set

    def invalidate(self, entity_id: int | None = None) -> None:
        with self._lock:
            if entity_id is None:
                self._entries.clear()
            else:
                self._entries.pop(entity_id, None)


# Process-wide cache used by the api/workflow layer.
RULE_CACHE = RuleSetCache()


__all__ = [
    "DEFAULT_RULES",
    "LoadedRule",
    "RULE_CACHE",
    "RuleSet",
    "RuleSetCache",
    "create_categorization_rule",
    "ensure_seed_rules_for_entity",
    "load_rule_set",
    "set_rule_enabled",
]
