# ruff: noqa: I001
"""CLI for the ``ledger_intake`` package.

Command handlers (``cmd_*``) return a process exit code and print errors to
stderr; the Typer commands below are thin wrappers. Environment variables
(``DATABASE_URL``, ``OPENAI_API_KEY``, ``LEDGER_INTAKE_*``) are loaded from a
local ``.env`` with ``python-dotenv`` before any command runs. Business logic
lives in :mod:`ledger_intake.api`.
"""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .errors import IngestValidationError, InvalidMatcherError, NotFoundError
from .logging_setup import configure_logging
from .models import CandidateTransaction, IngestResult

_OWNER_DEFAULT = "local"

console = Console()


def _print_ingest_result(result: IngestResult) -> None:
    if result.was_existing:
        print(
            f"Upload {result.uploaded_file_id} already exists "
            f"({result.raw_count} transactions); nothing ingested."
        )
        return
    label = f"upload {result.uploaded_file_id}" if result.uploaded_file_id else "manual entry"
    print(
        f"Ingested {result.raw_count} transactions ({label}); "
        f"{result.needs_review_count} need review."
    )
    for row in result.rows:
        d = row.decision
        print(
            f"  #{row.normalized_transaction_id}\t{d.category_code or '-'}\t"
            f"{d.method}\t{d.confidence:.2f}\t{d.status}"
        )


def cmd_seed_categories(*, database_url: str | None) -> int:
    from .api import seed_categories

    try:
        added = seed_categories(database_url=database_url)
    except Exception as e:  # noqa: BLE001
        print(f"Error: seeding categories failed: {e}", file=sys.stderr)
        return 1
    print(f"Added {added} categories.")
    return 0


def cmd_ingest_csv(
    csv_path: Path,
    *,
    owner: str,
    entity_id: int | None,
    source_type: str,
    database_url: str | None,
) -> int:
    from .api import ingest_csv_upload, resolve_entity_id

    try:
        content = csv_path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        return 1

    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        result = ingest_csv_upload(
            content,
            entity_id=eid,
            original_name=csv_path.name,
            source_type=source_type,
            database_url=database_url,
        )
    except IngestValidationError as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
        return 1
    except (ValueError, NotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_ingest_result(result)
    return 0


def cmd_add_manual(
    *,
    owner: str,
    entity_id: int | None,
    txn_date: str,
    amount: str,
    direction: str,
    description: str,
    reference: str | None,
    database_url: str | None,
) -> int:
    from pydantic import ValidationError

    from .api import ingest_manual_entry, resolve_entity_id

    try:
        candidate = CandidateTransaction.model_validate(
            {
                "date": txn_date,
                "amount": amount,
                "direction": direction,
                "description": description,
                "reference": reference,
            }
        )
    except ValidationError as e:
        print(f"Error: invalid transaction: {e}", file=sys.stderr)
        return 1
    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        result = ingest_manual_entry(candidate, entity_id=eid, database_url=database_url)
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_ingest_result(result)
    return 0


def cmd_review_queue(
    *,
    owner: str,
    entity_id: int | None,
    status: str,
    uploaded_file_id: int | None,
    limit: int | None,
    database_url: str | None,
) -> int:
    from .api import list_review_queue, resolve_entity_id

    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        items = list_review_queue(
            entity_id=eid,
            status=status,
            uploaded_file_id=uploaded_file_id,
            limit=limit,
            database_url=database_url,
        )
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if not items:
        print("Review queue is empty.")
        return 0
    table = Table(title=f"Review queue ({status})")
    for col in ("id", "date", "dir", "amount", "description", "category", "method", "conf"):
        table.add_column(col)
    for it in items:
        table.add_row(
            str(it.normalized_transaction_id),
            it.transaction_date.isoformat(),
            it.direction,
            str(it.amount),
            it.description_clean,
            it.category_code or "-",
            it.method,
            f"{it.confidence:.2f}",
        )
    console.print(table)
    return 0


def cmd_override(
    normalized_id: int,
    category_code: str,
    *,
    owner: str,
    entity_id: int | None,
    reason: str | None,
    database_url: str | None,
) -> int:
    from .api import apply_override, resolve_entity_id

    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        result = apply_override(
            entity_id=eid,
            normalized_id=normalized_id,
            category_code=category_code,
            actor=owner,
            reason=reason,
            database_url=database_url,
        )
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(
        f"Transaction {result.normalized_transaction_id} set to {category_code} "
        f"(learned rule {result.override_rule_id})."
    )
    return 0


def cmd_commit_upload(
    uploaded_file_id: int,
    *,
    owner: str,
    entity_id: int | None,
    database_url: str | None,
) -> int:
    from .api import commit_upload, resolve_entity_id

    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        result = commit_upload(
            entity_id=eid, uploaded_file_id=uploaded_file_id, database_url=database_url
        )
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if not result.committed:
        print(f"Error: {result.message}", file=sys.stderr)
        return 1
    print(result.message or f"Upload {uploaded_file_id} committed.")
    return 0


def cmd_list_uploads(
    *,
    owner: str,
    entity_id: int | None,
    status: str | None,
    database_url: str | None,
) -> int:
    from .api import list_uploads, resolve_entity_id

    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        uploads = list_uploads(entity_id=eid, status=status, database_url=database_url)
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    table = Table(title="Uploads")
    for col in ("id", "status", "rows", "name", "sha256"):
        table.add_column(col)
    for u in uploads:
        table.add_row(
            str(u["id"]),
            u["status"],
            str(u["raw_count"]),
            u["original_name"] or "-",
            u["content_sha256"][:12],
        )
    console.print(table)
    return 0


def cmd_add_rule(
    *,
    owner: str,
    entity_id: int | None,
    name: str,
    category_code: str,
    direction: str | None,
    contains: str | None,
    regex: str | None,
    priority: int,
    database_url: str | None,
) -> int:
    from .api import create_rule, resolve_entity_id

    matchers = {
        "direction": direction,
        "description_contains": contains,
        "description_regex": regex,
    }
    try:
        eid = resolve_entity_id(owner, entity_id, database_url=database_url)
        rule_id = create_rule(
            entity_id=eid,
            name=name,
            category_code=category_code,
            matchers={k: v for k, v in matchers.items() if v},
            priority=priority,
            database_url=database_url,
        )
    except (InvalidMatcherError, NotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Created rule {rule_id}.")
    return 0


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Ingest bank transactions, classify them (rules, history, AI) and manage the "
        "review/commit workflow. Loads DATABASE_URL and OPENAI_API_KEY from a local .env."
    ),
)

_DB_URL_HELP = "Override DATABASE_URL (falls back to env var)."
_OWNER_HELP = "Owner reference used to resolve the entity."
_ENTITY_HELP = "Entity id (defaults to the owner's default entity)."


@app.command("seed-categories")
def seed_categories_cmd(
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """Insert the default accounting categories (idempotent)."""

    raise typer.Exit(cmd_seed_categories(database_url=database_url))


@app.command("ingest-csv")
def ingest_csv_cmd(
    csv_path: Path = typer.Argument(..., help="Statement CSV (date, amount, direction, ...)."),
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    source_type: str = typer.Option("bank", help="bank, upi, card or cash."),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """Upload a statement CSV and classify its transactions."""

    raise typer.Exit(
        cmd_ingest_csv(
            csv_path,
            owner=owner,
            entity_id=entity_id,
            source_type=source_type,
            database_url=database_url,
        )
    )


@app.command("add-manual")
def add_manual_cmd(
    txn_date: str = typer.Option(date.today().isoformat(), "--date", help="ISO date."),
    amount: str = typer.Option(..., help="Amount (magnitude)."),
    direction: str = typer.Option(..., help="inflow/credit/cr or outflow/debit/dr."),
    description: str = typer.Option(..., help="Transaction description."),
    reference: str | None = typer.Option(None, help="Optional reference id."),
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """Ingest one manually entered transaction."""

    raise typer.Exit(
        cmd_add_manual(
            owner=owner,
            entity_id=entity_id,
            txn_date=txn_date,
            amount=amount,
            direction=direction,
            description=description,
            reference=reference,
            database_url=database_url,
        )
    )


@app.command("review-queue")
def review_queue_cmd(
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    status: str = typer.Option("needs_review", help="needs_review or confirmed."),
    upload: int | None = typer.Option(None, help="Only transactions of this upload."),
    limit: int | None = typer.Option(None, help="Max items (capped at 200)."),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """List categorizations awaiting review."""

    raise typer.Exit(
        cmd_review_queue(
            owner=owner,
            entity_id=entity_id,
            status=status,
            uploaded_file_id=upload,
            limit=limit,
            database_url=database_url,
        )
    )


@app.command("override")
def override_cmd(
    normalized_id: int = typer.Argument(..., help="Normalized transaction id."),
    category_code: str = typer.Argument(..., help="Category code, e.g. SALARY_INCOME."),
    reason: str | None = typer.Option(None, help="Reason recorded in the audit log."),
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """Set a transaction's category and learn a rule from it."""

    raise typer.Exit(
        cmd_override(
            normalized_id,
            category_code,
            owner=owner,
            entity_id=entity_id,
            reason=reason,
            database_url=database_url,
        )
    )


@app.command("commit-upload")
def commit_upload_cmd(
    uploaded_file_id: int = typer.Argument(..., help="Upload id."),
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """Commit an upload once nothing in it needs review."""

    raise typer.Exit(
        cmd_commit_upload(
            uploaded_file_id, owner=owner, entity_id=entity_id, database_url=database_url
        )
    )


@app.command("list-uploads")
def list_uploads_cmd(
    status: str | None = typer.Option(None, help="staged or committed."),
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """List recent uploads."""

    raise typer.Exit(
        cmd_list_uploads(
            owner=owner, entity_id=entity_id, status=status, database_url=database_url
        )
    )


@app.command("add-rule")
def add_rule_cmd(
    name: str = typer.Option(..., help="Rule name."),
    category_code: str = typer.Option(..., "--category", help="Category code."),
    direction: str | None = typer.Option(None, help="inflow or outflow."),
    contains: str | None = typer.Option(None, help="Case-insensitive substring."),
    regex: str | None = typer.Option(None, help="Case-insensitive regex."),
    priority: int = typer.Option(100, help="Lower numbers win."),
    owner: str = typer.Option(_OWNER_DEFAULT, help=_OWNER_HELP),
    entity_id: int | None = typer.Option(None, help=_ENTITY_HELP),
    database_url: str | None = typer.Option(None, help=_DB_URL_HELP),
) -> None:
    """Create a categorization rule for the entity."""

    raise typer.Exit(
        cmd_add_rule(
            owner=owner,
            entity_id=entity_id,
            name=name,
            category_code=category_code,
            direction=direction,
            contains=contains,
            regex=regex,
            priority=priority,
            database_url=database_url,
        )
    )


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps already-set environment variables
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    main()
