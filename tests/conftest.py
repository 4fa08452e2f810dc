# ruff: noqa: E402, I001
"""Pytest configuration for test isolation.

- Makes the workspace packages importable (``packages/``, ``libs/db/src`` and
  the repo root for ``tests.helpers``).
- Clears environment that would reach real services (``OPENAI_API_KEY``,
  ``DATABASE_URL``) and tunables, so each test opts in explicitly.
- Disables retry sleeps and drops cached rule sets and engines between tests.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

from db.client import dispose_engines
import ledger_intake.ai_classifier as ai_classifier_mod
from ledger_intake.rules import RULE_CACHE

from tests.helpers.db import bootstrap_sqlite_db, create_entity

_ENV_VARS = (
    "OPENAI_API_KEY",
    "DATABASE_URL",
    "LEDGER_INTAKE_OPENAI_MODEL",
    "LEDGER_INTAKE_AI_TIMEOUT_SEC",
    "LEDGER_INTAKE_AI_MAX_ATTEMPTS",
    "LEDGER_INTAKE_CLASSIFY_CONCURRENCY",
    "LEDGER_INTAKE_TIMEZONE",
    "LEDGER_INTAKE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(ai_classifier_mod, "_sleep_backoff", lambda attempt_no: None)
    RULE_CACHE.invalidate()
    yield
    RULE_CACHE.invalidate()


@pytest.fixture
def db_url(tmp_path: Path) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "intake.sqlite3")
    yield url
    dispose_engines()


@pytest.fixture
def entity_id(db_url: str) -> int:
    return create_entity(db_url)
