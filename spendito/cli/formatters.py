"""CLI output formatters.

Keeps display logic out of main.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from ..models import CategoryRule, Transaction, YearSummary
    from ..services import DuplicateMatch, ImportResult, QuarterlyReviewSummary


def format_sync_time(sync_state: dict | None) -> str:
    """Format sync time for display."""
    if sync_state and sync_state.get("last_sync_at"):
        return sync_state["last_sync_at"].strftime("%Y-%m-%d %H:%M")
    return "Never"


def format_amount(amount: float) -> str:
    """German-style money formatting, e.g. "-1.234,56 €"."""
    text = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{text} €"


def format_transaction_row(txn: Transaction, show_id: bool = False) -> str:
    """Format a transaction row for CLI display.

    Args:
        txn: Transaction to format.
        show_id: Prefix the row with the transaction ID.

    Returns:
        Formatted string for display.
    """
    description = txn.description[:30].ljust(30)
    category = txn.category.label_de[:18].ljust(18)
    source = "VB" if txn.source_account.value == "volksbank" else "PP"
    row = f"{txn.display_date}  {source}  {format_amount(txn.amount):>14}  {description}  {category}"
    if txn.is_duplicate:
        row += click.style("  [DUPLIKAT]", fg="yellow")
    elif txn.is_transfer:
        row += click.style("  [TRANSFER]", fg="cyan")
    if txn.is_user_confirmed:
        row += click.style("  ✓", fg="green")
    if show_id:
        row = f"{txn.id}  {row}"
    return row


def format_rule_row(rule: CategoryRule) -> str:
    """Format a categorization rule for CLI display."""
    amount_range = ""
    if rule.has_amount_range:
        low = "" if rule.min_amount is None else f"{rule.min_amount:g}"
        high = "" if rule.max_amount is None else f"{rule.max_amount:g}"
        amount_range = f"  [{low}–{high}]"
    origin = "user" if rule.is_user_defined else "default"
    return (
        f"{rule.id:<20} {rule.category.value:<15} prio {rule.priority:>4}  "
        f"hits {rule.match_count:>4}  {origin:<7} {rule.pattern}{amount_range}"
    )


def echo_success(message: str) -> None:
    """Echo a success message in green."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def echo_error(message: str) -> None:
    """Echo an error message in red."""
    click.echo(click.style(f"✗ {message}", fg="red"))


def echo_warning(message: str) -> None:
    """Echo a warning message in yellow."""
    click.echo(click.style(f"⚠ {message}", fg="yellow"))


def echo_header(message: str) -> None:
    """Echo a header with underline."""
    click.echo(f"\n{message}")
    click.echo("=" * len(message))


def format_import_result(result: ImportResult) -> None:
    """Format and display an import or pull result."""
    source = result.source.capitalize()
    if not result.success:
        echo_error(f"{source}: {'; '.join(result.errors)}")
        return
    echo_success(f"Fetched {result.fetched} {source} records")
    click.echo(
        f"    Inserted: {result.inserted}, Already known: {result.skipped_duplicates}, "
        f"Link changes: {result.linked}"
    )
    if result.row_errors:
        echo_warning(f"{len(result.row_errors)} rows skipped")
        for error in result.row_errors:
            click.echo(f"    {error}")


def format_year_summary(summary: YearSummary) -> None:
    """Display income, expense and balance for a year."""
    echo_header(f"Jahresübersicht {summary.year}")
    click.echo(f"Einnahmen: {format_amount(summary.total_income):>16}")
    for item in summary.income_by_category:
        click.echo(
            f"  {item.category.label_de:<28} {format_amount(item.total):>14} "
            f"{item.percentage:5.1f}%  ({item.count})"
        )
    click.echo(f"Ausgaben:  {format_amount(summary.total_expense):>16}")
    for item in summary.expense_by_category:
        click.echo(
            f"  {item.category.label_de:<28} {format_amount(item.total):>14} "
            f"{item.percentage:5.1f}%  ({item.count})"
        )
    color = "green" if summary.balance >= 0 else "red"
    click.echo(click.style(f"Saldo:     {format_amount(summary.balance):>16}", fg=color))


def format_duplicate_match(match: DuplicateMatch) -> None:
    """Display a scored cross-account pair."""
    click.echo(
        f"{match.confidence:.0%}  VB {match.bank.display_date} {format_amount(match.bank.amount)} "
        f"{match.bank.description[:25]}  <->  PP {match.paypal.display_date} "
        f"{match.paypal.description[:25]}"
    )
    click.echo(f"      {match.reason}")


def format_review_summary(summary: QuarterlyReviewSummary) -> None:
    """Display the outcome of a quarterly review."""
    echo_header(f"Quartalsprüfung {summary.quarter}")
    source = "advisor" if summary.used_advisor else "rules"
    click.echo(
        f"Reviewed {summary.reviewed_transactions} of {summary.total_transactions} "
        f"transactions ({source})"
    )
    for result in summary.results:
        if not result.needs_review:
            continue
        arrow = (
            f"{result.original_category.value} -> {result.suggested_category.value}"
            if result.is_change
            else result.original_category.value
        )
        click.echo(f"  {result.transaction_id}  {arrow}  ({result.confidence:.0%})")
        click.echo(f"      {result.reasoning}")
    click.echo(f"Suggested changes: {summary.suggested_changes}")
    if summary.applied_changes:
        echo_success(f"Applied {summary.applied_changes} changes")
