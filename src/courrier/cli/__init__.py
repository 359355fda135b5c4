"""CLI package for courrier.

Commands are organized into modules:
- account.py: accounts, mailboxes
- fetch.py: one-shot fetch
- serve.py: dashboard/API server with scheduled fetches
- status.py: status, stats, runs
- utils.py: Shared utilities and helpers
"""

import click
from click import option
from dotenv import load_dotenv

from .utils import AliasGroup

from .account import accounts, mailboxes
from .fetch import fetch
from .serve import serve
from .status import runs, stats, status


@click.group(cls=AliasGroup, aliases={
    'a': 'accounts',
    'f': 'fetch',
    'm': 'mailboxes',
    'r': 'runs',
    's': 'serve',
    'st': 'status',
    't': 'stats',
})
@option('-c', '--config', 'config_path', type=click.Path(dir_okay=False), help="Config file (default: $COURRIER_CONFIG, else ./config.yaml)")
@click.pass_context
def main(ctx: click.Context, config_path: str | None):
    """Incremental IMAP mail archiver."""
    load_dotenv()
    ctx.ensure_object(dict)["config_path"] = config_path


main.add_command(accounts)
main.add_command(fetch)
main.add_command(mailboxes)
main.add_command(runs)
main.add_command(serve)
main.add_command(stats)
main.add_command(status)


__all__ = [
    'main',
    'accounts',
    'fetch',
    'mailboxes',
    'runs',
    'serve',
    'stats',
    'status',
]
