"""Runtime settings read from the environment.

The CLI loads a local ``.env`` (``python-dotenv``) before calling
:func:`load_settings`; library callers may construct :class:`IntakeSettings`
directly. Invalid numeric values fall back to the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TIMEZONE = "Asia/Kolkata"


@dataclass(frozen=True, slots=True)
class IntakeSettings:
    openai_model: str = "gpt-5"
    ai_timeout_sec: float = 30.0
    ai_max_attempts: int = 3
    classify_concurrency: int = 4
    # Same-description rows consulted by the history stage.
    history_window: int = 10
    # Same-description rows passed to the AI classifier as context.
    ai_history_window: int = 12
    timezone: str = DEFAULT_TIMEZONE
    review_queue_default_limit: int = 50
    review_queue_max_limit: int = 200


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw else None
    except ValueError:
        value = None
    if value is None or value < minimum:
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        value = float(raw) if raw else None
    except ValueError:
        value = None
    if value is None or value <= 0:
        return default
    return value


def load_settings() -> IntakeSettings:
    """Build settings from ``LEDGER_INTAKE_*`` environment variables."""

    base = IntakeSettings()
    return IntakeSettings(
        openai_model=os.getenv("LEDGER_INTAKE_OPENAI_MODEL") or base.openai_model,
        ai_timeout_sec=_env_float("LEDGER_INTAKE_AI_TIMEOUT_SEC", base.ai_timeout_sec),
        ai_max_attempts=_env_int("LEDGER_INTAKE_AI_MAX_ATTEMPTS", base.ai_max_attempts),
        classify_concurrency=min(
            32,
            _env_int("LEDGER_INTAKE_CLASSIFY_CONCURRENCY", base.classify_concurrency),
        ),
        timezone=os.getenv("LEDGER_INTAKE_TIMEZONE") or base.timezone,
    )


__all__ = ["DEFAULT_TIMEZONE", "IntakeSettings", "load_settings"]
