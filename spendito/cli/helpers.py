"""Shared CLI helpers for context management and service creation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from click import Context

    from ..db.database import Database
    from ..services import LedgerService, SyncService


def get_db(ctx: Context) -> Database:
    """Lazily open the database.

    Mock mode uses a separate database file so mock data never mixes with
    real bookings.
    """
    from ..db.database import Database

    if "db" not in ctx.obj:
        cfg = ctx.obj["config"]
        if ctx.obj.get("mock", False):
            db_path = cfg.data_dir / "mock_spendito.db"
        else:
            db_path = cfg.db_path
        ctx.obj["db"] = Database(db_path)
    return ctx.obj["db"]


def get_ledger(ctx: Context) -> LedgerService:
    """Lazily create the ledger service."""
    from ..services import LedgerService

    if "ledger" not in ctx.obj:
        ctx.obj["ledger"] = LedgerService(
            db=get_db(ctx),
            config=ctx.obj["config"],
            show_progress=True,
        )
    return ctx.obj["ledger"]


def get_sync_service(ctx: Context) -> SyncService:
    """Lazily create the sync service.

    Only mock mode has feeds; real bookings come in through ``import-csv``.
    """
    from ..clients import MockFeed
    from ..models import SourceAccount
    from ..services import SyncService

    if "sync_service" not in ctx.obj:
        feeds = []
        if ctx.obj.get("mock", False):
            feeds = [MockFeed(SourceAccount.VOLKSBANK), MockFeed(SourceAccount.PAYPAL)]
        ctx.obj["sync_service"] = SyncService(get_ledger(ctx), feeds)
    return ctx.obj["sync_service"]


def require_data(db: Database) -> bool:
    """Check if the database has transactions, show a message if empty.

    Returns:
        True if data exists, False otherwise (also prints message).
    """
    if db.get_transaction_count() == 0:
        click.echo(click.style("No transactions in database.", fg="yellow"))
        click.echo("Run 'pull' or 'import-csv' first.")
        return False
    return True
