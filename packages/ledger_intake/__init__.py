"""Transaction intake: normalization, staged classification and upload ledger.

Entry points live in :mod:`ledger_intake.api` (library use) and
:mod:`ledger_intake.cli` (console). Importing this package has no side
effects.
"""
