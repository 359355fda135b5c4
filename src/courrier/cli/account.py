"""Account inspection commands."""

import sys

import click
from click import argument, echo

from ..auth import connect
from ..coordinator import group_accounts
from .utils import err, find_account, get_config, handle_errors


@click.command()
@click.pass_context
def accounts(ctx: click.Context):
    """List configured accounts, grouped by server."""
    config = get_config(ctx)
    for server in group_accounts(config.accounts):
        echo(f"{server['host']}:{server['port']}")
        for acct in server["accounts"]:
            echo(f"  {acct['email']}")


@click.command(no_args_is_help=True)
@argument('email')
@click.pass_context
@handle_errors
def mailboxes(ctx: click.Context, email: str):
    """List the mailboxes an account would fetch.

    \b
    Examples:
      courrier mailboxes me@example.com
      courrier m me@example.com          # using alias
    """
    config = get_config(ctx)
    acct = find_account(config, email)
    if not acct:
        err(f"Account '{email}' not found in config.")
        sys.exit(1)

    session = connect(acct, timeout=config.network_timeout_seconds)
    try:
        folders = session.list_folders()
    finally:
        session.logout()

    echo(f"Mailboxes for {email}:\n")
    for flags, _, name in folders:
        special = " [not selectable]" if "\\Noselect" in flags else ""
        echo(f"  {name}{special}")
