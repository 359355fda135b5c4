"""Serve command: web dashboard plus scheduled fetching."""

import click
from click import option

from ..coordinator import FetchCoordinator
from ..scheduler import FetchScheduler
from ..utils import err
from .utils import get_config, handle_errors, open_ledger


@click.command()
@option('-H', '--host', help="Bind address (default from config, else 0.0.0.0)")
@option('-i', '--interval', type=int, help="Periodic fetch interval in seconds (overrides config)")
@option('-N', '--no-startup-fetch', is_flag=True, help="Don't fetch when the server starts")
@option('-p', '--port', type=int, help="Port (default from config, else 3000)")
@click.pass_context
@handle_errors
def serve(ctx: click.Context, host: str | None, interval: int | None, no_startup_fetch: bool, port: int | None):
    """Run the dashboard/API server with startup and periodic fetches.

    \b
    Examples:
      courrier serve                 # settings from config.yaml
      courrier serve -p 8080 -i 900  # fetch every 15 minutes
      courrier serve -N              # only fetch when triggered
    """
    from .. import web

    config = get_config(ctx)
    ledger = open_ledger(config)
    err(f"Loaded {len(config.accounts)} account(s)")
    err(f"Output directory: {config.email_storage_path}")
    config.email_storage_path.mkdir(parents=True, exist_ok=True)

    coordinator = FetchCoordinator.from_config(config, ledger)
    coordinator.recover_stale_runs()
    scheduler = FetchScheduler(
        coordinator,
        interval_seconds=interval or config.fetch_interval_seconds,
        fetch_on_startup=config.fetch_on_startup and not no_startup_fetch,
    )
    app = web.create_app(coordinator, scheduler)
    try:
        web.main(app, host=host or config.web.host, port=port or config.web.port)
    finally:
        ledger.disconnect()
