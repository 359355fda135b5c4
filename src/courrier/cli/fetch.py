"""One-shot fetch command."""

import sys
from dataclasses import replace

import click
from click import echo, option, style

from ..coordinator import FetchCoordinator
from .utils import err, find_account, get_config, handle_errors, open_ledger


@click.command()
@option('-a', '--account', 'emails', multiple=True, help="Only fetch this account (repeatable)")
@click.pass_context
@handle_errors
def fetch(ctx: click.Context, emails: tuple[str, ...]):
    """Fetch new messages from every configured account, then exit.

    \b
    Examples:
      courrier fetch                       # all accounts
      courrier fetch -a me@example.com     # one account
    """
    config = get_config(ctx)
    if emails:
        accounts = []
        for email in emails:
            acct = find_account(config, email)
            if not acct:
                err(f"Account '{email}' not found in config.")
                sys.exit(1)
            accounts.append(acct)
        config = replace(config, accounts=accounts)

    ledger = open_ledger(config)
    coordinator = FetchCoordinator.from_config(config, ledger)
    try:
        coordinator.recover_stale_runs()
        summary = coordinator.run_now()
    finally:
        coordinator.shutdown()
        ledger.disconnect()

    echo()
    echo(f"Saved: {summary.saved}")
    if summary.failed:
        echo(style(f"Failed messages: {summary.failed}", fg="red"))
    if summary.failed_mailboxes:
        echo(style(f"Failed mailboxes: {summary.failed_mailboxes}", fg="red"))
    echo(f"Messages saved to: {config.email_storage_path}")
    if summary.failed or summary.failed_mailboxes:
        sys.exit(1)
