"""Status, stats, and run-history commands."""

from datetime import datetime

import click
import humanize
from click import echo, option, style
from rich.console import Console
from rich.table import Table

from ..coordinator import FetchStatus
from ..ledger import Ledger
from .utils import get_config


def _ts(dt: datetime | None) -> str:
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


@click.command()
@click.pass_context
def status(ctx: click.Context):
    """Show whether a fetch is running, and the last run's result."""
    config = get_config(ctx)
    with Ledger(config.db_path) as ledger:
        snapshot = FetchStatus.from_record(ledger.latest_run())

    if snapshot.is_running:
        echo(style("Fetch running", fg="yellow"))
    elif snapshot.started_at:
        echo(style("Idle", fg="green"))
    else:
        echo("No fetch has run yet.")
        return
    echo(f"Started:   {_ts(snapshot.started_at)}")
    if not snapshot.is_running:
        echo(f"Completed: {_ts(snapshot.completed_at)}")
    echo(f"Fetched:   {snapshot.messages_fetched:,}")


@click.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show saved message counts and sizes per account/mailbox."""
    config = get_config(ctx)
    with Ledger(config.db_path) as ledger:
        rows = ledger.stats()
        total = ledger.total_stats()

    if not rows:
        echo("No messages saved yet.")
        return

    table = Table(title="Saved messages")
    table.add_column("Account")
    table.add_column("Mailbox")
    table.add_column("Messages", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Last fetch")
    for row in rows:
        table.add_row(
            row.account_email,
            row.mailbox,
            f"{row.count:,}",
            humanize.naturalsize(row.total_bytes),
            _ts(row.last_fetched_at),
        )
    Console().print(table)
    echo(f"Total: {total.count:,} messages, {humanize.naturalsize(total.total_bytes)}")


@click.command()
@option('-n', '--limit', default=20, help="Number of runs to show")
@click.pass_context
def runs(ctx: click.Context, limit: int):
    """Show recent per-mailbox fetch runs."""
    config = get_config(ctx)
    with Ledger(config.db_path) as ledger:
        records = ledger.recent_runs(limit=limit)

    if not records:
        echo("No fetch runs recorded.")
        return

    colors = {"completed": "green", "failed": "red", "running": "yellow"}
    table = Table(title="Recent runs")
    table.add_column("ID", justify="right")
    table.add_column("Account")
    table.add_column("Mailbox")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Fetched", justify="right")
    table.add_column("Status")
    for r in records:
        if r.started_at and r.completed_at:
            duration = humanize.naturaldelta(r.completed_at - r.started_at)
        else:
            duration = "-"
        color = colors.get(r.status, "white")
        table.add_row(
            str(r.id),
            r.account_email,
            r.mailbox,
            _ts(r.started_at),
            duration,
            f"{r.messages_fetched:,}",
            f"[{color}]{r.status}[/]",
        )
    Console().print(table)
