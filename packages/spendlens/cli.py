# ruff: noqa: I001
"""CLI for the ``spendlens`` package.

A Typer console over :mod:`spendlens.api`. The root callback loads a local
``.env`` with ``python-dotenv`` (never overriding variables already set),
configures logging once and builds :class:`~spendlens.config.Settings`,
which commands read from the Typer context. Commands that touch the
database open a ``db.client.session_scope`` and wrap it in a
:class:`~spendlens.persistence.SqlStore`; the scope commits on success.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import Settings, load_settings
from .errors import SpendlensError
from .logging_setup import configure_logging
from .money import dollars_to_cents, format_cents

if TYPE_CHECKING:
    from .persistence import SqlStore
    from .stores import LedgerStore


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank CSV exports, flag duplicates, categorize with learned rules "
        "and track monthly budgets. Loads DATABASE_URL from a local .env."
    ),
)


# Module-level option objects keep calls out of parameter defaults (ruff B008).
USER_OPTION: OptionInfo = typer.Option(..., "--user", "-u", help="Owner user id.")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
MONTH_OPTION: OptionInfo = typer.Option(
    None, "--month", "-m", help="Month as YYYY-MM (defaults to the current month)."
)


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return load_settings()


def _fail(message: str) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(1)


@contextmanager
def _sql_store(ctx: typer.Context, database_url: str | None) -> Iterator[SqlStore]:
    from db.client import session_scope

    from .persistence import SqlStore

    url = database_url or _settings(ctx).database_url
    if not url:
        raise _fail("DATABASE_URL is not set (use --database-url or a .env file)")
    with session_scope(database_url=url) as session:
        yield SqlStore(session)


def _read_rows(csv_path: Path) -> list[list[str]]:
    import csv

    from .ingest.utils import read_csv_file

    try:
        return read_csv_file(csv_path)
    except FileNotFoundError:
        raise _fail(f"File not found: {csv_path}") from None
    except PermissionError:
        raise _fail(f"Permission denied: {csv_path}") from None
    except (csv.Error, UnicodeDecodeError) as e:
        raise _fail(f"Failed to read CSV: {e}") from e


def _month_or_current(month: str | None) -> str:
    from .budgets import current_month, month_bounds

    value = month or current_month()
    try:
        month_bounds(value)
    except ValueError as e:
        raise _fail(str(e)) from e
    return value


# ---- Commands -----------------------------------------------------------------


@app.command("detect-format")
def detect_format_cmd(
    ctx: typer.Context,
    csv_path: Annotated[Path, typer.Argument(help="CSV export to inspect.", dir_okay=False)],
) -> None:
    """Print the bank profile selected for a CSV file and its column mapping."""

    from .errors import UnrecognizedFormatError
    from .ingest.detect import FormatDetector

    rows = _read_rows(csv_path)
    try:
        match = FormatDetector(_settings(ctx).bank_profiles()).locate(rows)
    except UnrecognizedFormatError as e:
        raise _fail(str(e)) from e

    typer.echo(f"profile\t{match.profile_id}\t{match.profile.display_name}")
    typer.echo(f"header_row\t{match.header_row}")
    typer.echo(f"date_formats\t{' '.join(match.date_formats)}")
    for fld, idx in sorted(match.columns.items(), key=lambda kv: kv[1]):
        typer.echo(f"column\t{fld}\t{match.header[idx]}")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    csv_path: Annotated[Path, typer.Argument(help="CSV export to import.", dir_okay=False)],
    user_id: Annotated[str, USER_OPTION],
    skip_duplicates: bool = typer.Option(
        False, help="Do not store rows flagged as duplicates."
    ),
    dry_run: bool = typer.Option(
        False, help="Parse, flag and categorize against an empty in-memory store."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Import one CSV export for a user."""

    from .api import import_transactions
    from .errors import UnrecognizedFormatError
    from .ingest.csv_parser import CsvParser
    from .ingest.detect import FormatDetector
    from .stores import InMemoryStore

    settings = _settings(ctx)
    rows = _read_rows(csv_path)
    parser = CsvParser(
        FormatDetector(settings.bank_profiles()), chunk_size=settings.parse_chunk_size
    )

    def _run(store: LedgerStore) -> None:
        summary = import_transactions(
            rows,
            user_id=user_id,
            store=store,
            parser=parser,
            skip_duplicates=skip_duplicates,
            lookback_days=settings.duplicate_lookback_days,
        )
        parse = summary.parse
        typer.echo(f"format\t{summary.detected_format}")
        typer.echo(f"rows\t{parse.total_rows}")
        typer.echo(f"parsed\t{parse.success_count}")
        typer.echo(f"errors\t{parse.error_count}")
        typer.echo(f"duplicates\t{summary.duplicate_count}")
        typer.echo(f"skipped\t{summary.skipped_duplicates}")
        typer.echo(f"imported\t{summary.imported_count}")
        typer.echo(f"categorized\t{summary.categorized_count}")
        for err in parse.errors:
            typer.echo(f"row {err.row}\t{err.column or '-'}\t{err.message}", err=True)
        for d in summary.degraded:
            typer.echo(f"warning\t{d.kind}\t{d}", err=True)

    try:
        if dry_run:
            _run(InMemoryStore())
        else:
            with _sql_store(ctx, database_url) as store:
                _run(store)
    except UnrecognizedFormatError as e:
        raise _fail(str(e)) from e
    except SpendlensError as e:
        raise _fail(f"import failed: {e}") from e


@app.command("add-category")
def add_category_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Category name.")],
    user_id: Annotated[str, USER_OPTION],
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Create a category (returns the existing one when the name is taken)."""

    if not name.strip():
        raise _fail("category name must not be empty")
    with _sql_store(ctx, database_url) as store:
        cat = store.create_category(user_id, name)
    typer.echo(f"{cat.id}\t{cat.name}")


@app.command("recategorize")
def recategorize_cmd(
    ctx: typer.Context,
    transaction_ids: Annotated[list[str], typer.Argument(help="Transaction ids to update.")],
    user_id: Annotated[str, USER_OPTION],
    category_id: str | None = typer.Option(
        None, "--category-id", help="Category to assign (omit with --clear)."
    ),
    clear: bool = typer.Option(False, help="Remove the category instead."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Assign (or clear) the category of one or more transactions."""

    from .api import bulk_update_category

    if (category_id is None) == (not clear):
        raise _fail("pass exactly one of --category-id or --clear")
    try:
        with _sql_store(ctx, database_url) as store:
            result = bulk_update_category(
                user_id,
                transaction_ids,
                None if clear else category_id,
                store=store,
            )
    except SpendlensError as e:
        raise _fail(str(e)) from e

    typer.echo(f"updated\t{len(result.transactions)}")
    for outcome in result.learned:
        if outcome.rule is not None:
            typer.echo(f"rule\t{outcome.pattern}\t{outcome.rule.confidence:.2f}")
    for missing in result.missing_ids:
        typer.echo(f"missing\t{missing}", err=True)
    for err in result.learning_errors:
        typer.echo(f"warning\tlearning\t{err}", err=True)


@app.command("set-budget")
def set_budget_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_OPTION],
    category_id: str = typer.Option(..., "--category-id", help="Budgeted category."),
    amount: str = typer.Option(..., "--amount", help="Budget in dollars, e.g. 250.00."),
    month: str | None = MONTH_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Create or replace a monthly budget."""

    from .api import set_budget

    month_value = _month_or_current(month)
    try:
        cents = dollars_to_cents(amount)
    except ValueError as e:
        raise _fail(str(e)) from e
    try:
        with _sql_store(ctx, database_url) as store:
            budget = set_budget(
                user_id,
                category_id,
                month_value,
                cents,
                store=store,
            )
    except (SpendlensError, ValueError) as e:
        raise _fail(str(e)) from e
    typer.echo(f"{budget.id}\t{budget.month.isoformat()}\t{format_cents(budget.amount_cents)}")


@app.command("budget-status")
def budget_status_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_OPTION],
    month: str | None = MONTH_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Show spend against every budget for a month."""

    from .api import budget_status

    month_value = _month_or_current(month)
    settings = _settings(ctx)
    with _sql_store(ctx, database_url) as store:
        names = {c.id: c.name for c in store.list_categories(user_id)}
        statuses = budget_status(
            user_id,
            month_value,
            store=store,
            concurrency=settings.budget_concurrency,
        )
    for s in statuses:
        flag = " (over)" if s.is_over_budget else ""
        warn = " (spend unavailable)" if s.degraded is not None else ""
        typer.echo(
            f"{names.get(s.category_id, s.category_id)}\t{format_cents(s.amount_cents)}\t"
            f"{format_cents(s.spent_cents)}\t{format_cents(s.remaining_cents)}\t"
            f"{s.percentage_used:.1f}%{flag}{warn}"
        )


@app.command("summary")
def summary_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_OPTION],
    month: str | None = MONTH_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Spending by category, income and net for a month."""

    from .api import spending_summary

    month_value = _month_or_current(month)
    with _sql_store(ctx, database_url) as store:
        summary = spending_summary(user_id, month_value, store=store)
    typer.echo(f"month\t{summary.month}")
    typer.echo(f"spending\t{format_cents(summary.total_spending_cents)}")
    typer.echo(f"income\t{format_cents(summary.total_income_cents)}")
    typer.echo(f"net\t{format_cents(summary.net_cents)}")
    for row in summary.categories:
        typer.echo(f"category\t{row.category_name}\t{format_cents(row.amount_cents)}")


@app.command("stats")
def stats_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_OPTION],
    start: str | None = typer.Option(None, help="First date (YYYY-MM-DD), inclusive."),
    end: str | None = typer.Option(None, help="Last date (YYYY-MM-DD), inclusive."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Categorization coverage and confidence over a date range."""

    from .api import categorization_statistics

    try:
        start_d = date.fromisoformat(start) if start else None
        end_d = date.fromisoformat(end) if end else None
    except ValueError as e:
        raise _fail(f"invalid date: {e}") from e
    with _sql_store(ctx, database_url) as store:
        stats = categorization_statistics(
            user_id,
            store=store,
            start=start_d,
            end=end_d,
        )
    typer.echo(f"total\t{stats.total}")
    typer.echo(f"categorized\t{stats.categorized}")
    typer.echo(f"uncategorized\t{stats.uncategorized}")
    typer.echo(f"average_confidence\t{stats.average_confidence:.2f}")
    for row in stats.distribution:
        typer.echo(f"category\t{row.category_name}\t{row.count}")


@app.command("seed-rules")
def seed_rules_cmd(
    ctx: typer.Context,
    user_id: Annotated[str, USER_OPTION],
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Install the built-in merchant rules for the user's matching categories."""

    from .learning import seed_default_rules

    with _sql_store(ctx, database_url) as store:
        created = seed_default_rules(
            user_id,
            category_store=store,
            rule_store=store,
        )
    typer.echo(f"seeded\t{len(created)}")


@app.callback()
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables), configures logging and resolves
    settings for the subcommands.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()
    ctx.obj = load_settings()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m spendlens.cli`
    app()
