"""Command-line interface for Spendito."""

from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..config import load_config
from ..exceptions import BackupError, ConfigError, RuleNotFoundError, TransactionNotFoundError
from ..models import Category, SourceAccount
from .formatters import (
    echo_error,
    echo_header,
    echo_success,
    echo_warning,
    format_amount,
    format_duplicate_match,
    format_import_result,
    format_review_summary,
    format_rule_row,
    format_sync_time,
    format_transaction_row,
    format_year_summary,
)
from .helpers import get_db, get_ledger, get_sync_service, require_data

CATEGORY_CHOICE = click.Choice([c.value for c in Category])
SOURCE_CHOICE = click.Choice([s.value for s in SourceAccount])


@click.group()
@click.option("--mock", is_flag=True, help="Use mock feeds and a separate mock database.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.version_option(__version__, prog_name="spendito")
@click.pass_context
def main(ctx: click.Context, mock: bool, config_path: Optional[Path], verbose: bool) -> None:
    """Spendito - bookkeeping for a small dog-rescue association.

    Imports Volksbank and PayPal transactions, categorizes them, links
    cross-account duplicates and PayPal Guthaben-Transfers, and reports
    per-year income and expenses.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["mock"] = mock


# =============================================================================
# Status and data intake
# =============================================================================


@main.command("db-status")
@click.pass_context
def db_status(ctx: click.Context) -> None:
    """Show database contents and sync state."""
    db = get_db(ctx)
    ledger = get_ledger(ctx)
    echo_header("Database Status")
    click.echo(f"Database: {db.db_path}")
    click.echo(f"Volksbank Transactions: {db.get_transaction_count(SourceAccount.VOLKSBANK)}")
    click.echo(f"PayPal Transactions:    {db.get_transaction_count(SourceAccount.PAYPAL)}")
    click.echo(f"Duplicates:             {db.get_duplicate_count()}")
    click.echo(f"Categorization Rules:   {db.get_rule_count()}")
    earliest, latest = db.get_transaction_date_range()
    if earliest:
        click.echo(f"Date range:             {earliest} to {latest}")
    for source in SourceAccount:
        state = db.get_sync_state(f"import:{source.value}")
        click.echo(f"Last {source.value} sync: {format_sync_time(state)}")
    if ledger.is_review_due():
        echo_warning("Quarterly review is due")


@main.command()
@click.option(
    "--source",
    type=click.Choice(["all"] + [s.value for s in SourceAccount]),
    default="all",
    help="Account to pull.",
)
@click.option("--full", is_flag=True, help="Ignore the last sync time and fetch everything.")
@click.pass_context
def pull(ctx: click.Context, source: str, full: bool) -> None:
    """Pull transactions from the account feeds."""
    sync = get_sync_service(ctx)
    if source == "all":
        results = list(sync.pull_all(full=full).values())
        if not results:
            echo_warning("No feeds configured. Use 'import-csv' or --mock.")
            return
    else:
        results = [sync.pull(SourceAccount(source), full=full)]
    for result in results:
        format_import_result(result)
    if not all(r.success for r in results):
        ctx.exit(1)


@main.command("import-csv")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_csv(ctx: click.Context, path: Path) -> None:
    """Import a Volksbank CSV export."""
    result = get_sync_service(ctx).import_csv(path)
    format_import_result(result)
    if not result.success:
        ctx.exit(1)


# =============================================================================
# Reports
# =============================================================================


@main.command()
@click.option("--year", type=int, default=None, help="Year to summarize (default: current).")
@click.pass_context
def summary(ctx: click.Context, year: Optional[int]) -> None:
    """Show income and expenses by category for a year."""
    ledger = get_ledger(ctx)
    year = year or date.today().year
    format_year_summary(ledger.year_summary(year))
    click.echo(f"\nAvailable years: {', '.join(str(y) for y in ledger.available_years())}")


@main.command()
@click.option("--year", type=int, default=None, help="Only this year.")
@click.option("--source", type=SOURCE_CHOICE, default=None, help="Only this account.")
@click.option("-n", "--limit", type=int, default=50, help="Maximum rows to show.")
@click.option("--ids", "show_ids", is_flag=True, help="Show transaction IDs.")
@click.pass_context
def transactions(
    ctx: click.Context, year: Optional[int], source: Optional[str], limit: int, show_ids: bool
) -> None:
    """List stored transactions, newest first."""
    ledger = get_ledger(ctx)
    if not require_data(ledger.db):
        return
    txns = ledger.get_transactions(
        year=year,
        source_account=SourceAccount(source) if source else None,
        limit=limit,
    )
    if not txns:
        click.echo("No transactions match.")
        return
    click.echo(f"Found {len(txns)} transactions:\n")
    for txn in txns:
        click.echo(format_transaction_row(txn, show_id=show_ids))


@main.command()
@click.option("--possible", is_flag=True, help="Show pairs that need a manual decision.")
@click.pass_context
def duplicates(ctx: click.Context, possible: bool) -> None:
    """Show linked duplicates and Guthaben-Transfers."""
    ledger = get_ledger(ctx)
    if not require_data(ledger.db):
        return
    if possible:
        matches = ledger.possible_duplicates()
        echo_header(f"Possible duplicates ({len(matches)})")
        for match in matches:
            format_duplicate_match(match)
        return

    pairs = ledger.duplicate_pairs()
    echo_header(f"Linked duplicates ({len(pairs)})")
    for primary, duplicate in pairs:
        click.echo(format_transaction_row(duplicate))
        click.echo(f"    -> {primary.display_date} {format_amount(primary.amount)} {primary.description}")
        if duplicate.duplicate_reason:
            click.echo(f"       {duplicate.duplicate_reason}")


# =============================================================================
# Categorization
# =============================================================================


@main.command()
@click.argument("transaction_id")
@click.argument("category", type=CATEGORY_CHOICE)
@click.pass_context
def categorize(ctx: click.Context, transaction_id: str, category: str) -> None:
    """Correct the category of a transaction (and learn from it)."""
    try:
        txn = get_ledger(ctx).update_category(transaction_id, Category(category))
    except TransactionNotFoundError as e:
        echo_error(str(e))
        ctx.exit(1)
    echo_success(f"{txn.description}: {txn.category.label_de}")


@main.command()
@click.argument("transaction_id")
@click.pass_context
def confirm(ctx: click.Context, transaction_id: str) -> None:
    """Confirm the current category of a transaction."""
    try:
        txn = get_ledger(ctx).confirm_category(transaction_id)
    except TransactionNotFoundError as e:
        echo_error(str(e))
        ctx.exit(1)
    echo_success(f"Confirmed {txn.description} as {txn.category.label_de}")


@main.command()
@click.pass_context
def recategorize(ctx: click.Context) -> None:
    """Re-apply the rules to every unconfirmed transaction."""
    outcome = get_ledger(ctx).recategorize()
    echo_success(
        f"Recategorized {outcome.recategorized} transactions, {outcome.relinked} link changes"
    )


@main.command()
@click.pass_context
def relink(ctx: click.Context) -> None:
    """Rerun duplicate and Guthaben-Transfer linking."""
    link = get_ledger(ctx).refresh_links()
    echo_success(
        f"{len(link.auto_flagged)} duplicates, {link.transfers_linked} transfers linked, "
        f"{link.paypal_transfers_flagged} PayPal transfers, {link.total_changed} changed"
    )
    if link.possible_duplicates:
        echo_warning(
            f"{len(link.possible_duplicates)} possible duplicates need review "
            "(see 'duplicates --possible')"
        )


@main.command()
@click.option("--apply", "apply_changes", is_flag=True, help="Apply suggested changes.")
@click.pass_context
def review(ctx: click.Context, apply_changes: bool) -> None:
    """Run the quarterly categorization review."""
    ledger = get_ledger(ctx)
    if not require_data(ledger.db):
        return
    format_review_summary(ledger.run_review(apply=apply_changes))


# =============================================================================
# Rules
# =============================================================================


@main.command()
@click.pass_context
def rules(ctx: click.Context) -> None:
    """List categorization rules by priority."""
    rule_list = sorted(
        get_ledger(ctx).categorizer.get_rules(), key=lambda r: r.priority, reverse=True
    )
    echo_header(f"Categorization rules ({len(rule_list)})")
    for rule in rule_list:
        click.echo(format_rule_row(rule))


@main.command("rules-add")
@click.argument("pattern")
@click.argument("category", type=CATEGORY_CHOICE)
@click.option("--min", "min_amount", type=float, default=None, help="Minimum absolute amount.")
@click.option("--max", "max_amount", type=float, default=None, help="Maximum absolute amount.")
@click.pass_context
def rules_add(
    ctx: click.Context,
    pattern: str,
    category: str,
    min_amount: Optional[float],
    max_amount: Optional[float],
) -> None:
    """Add a categorization rule (a regular expression)."""
    try:
        rule = get_ledger(ctx).add_rule(pattern, Category(category), min_amount, max_amount)
    except re.error as e:
        echo_error(f"Invalid pattern {pattern!r}: {e}")
        ctx.exit(1)
    echo_success(f"Added rule {rule.id}")


@main.command("rules-delete")
@click.argument("rule_id")
@click.pass_context
def rules_delete(ctx: click.Context, rule_id: str) -> None:
    """Delete a categorization rule."""
    try:
        get_ledger(ctx).delete_rule(rule_id)
    except RuleNotFoundError as e:
        echo_error(str(e))
        ctx.exit(1)
    echo_success(f"Deleted rule {rule_id}")


@main.command("rules-reset")
@click.confirmation_option(prompt="Discard all learned rules?")
@click.pass_context
def rules_reset(ctx: click.Context) -> None:
    """Restore the built-in rules, discarding everything learned."""
    outcome = get_ledger(ctx).reset_rules()
    echo_success(f"Rules reset, {outcome.recategorized} transactions recategorized")


# =============================================================================
# Backup
# =============================================================================


@main.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def export(ctx: click.Context, path: Path) -> None:
    """Export transactions and rules to a JSON backup."""
    from ..services.backup import export_backup

    counts = export_backup(get_db(ctx), path)
    echo_success(f"Exported {counts['transactions']} transactions and {counts['rules']} rules")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.confirmation_option(prompt="Replace all stored transactions and rules?")
@click.pass_context
def restore(ctx: click.Context, path: Path) -> None:
    """Restore transactions and rules from a JSON backup."""
    from ..services.backup import restore_backup

    try:
        counts = restore_backup(get_db(ctx), path)
    except BackupError as e:
        echo_error(str(e))
        ctx.exit(1)
    echo_success(f"Restored {counts['transactions']} transactions and {counts['rules']} rules")


if __name__ == "__main__":
    main()
