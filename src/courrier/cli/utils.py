"""Shared CLI utilities and helpers."""

import sys
from functools import wraps

import click

from ..config import AccountConfig, CourrierConfig, load_config
from ..errors import ConfigError, CourrierError
from ..ledger import Ledger
from ..utils import err


def get_config(ctx: click.Context) -> CourrierConfig:
    """Load config from the path given to the main group (cached on ctx)."""
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        try:
            obj["config"] = load_config(obj.get("config_path"))
        except ConfigError as e:
            err(f"Error: {e}")
            sys.exit(1)
    return obj["config"]


def open_ledger(config: CourrierConfig) -> Ledger:
    ledger = Ledger(config.db_path)
    ledger.connect()
    return ledger


def find_account(config: CourrierConfig, email: str) -> AccountConfig | None:
    for acct in config.accounts:
        if acct.email == email:
            return acct
    return None


def handle_errors(f):
    """Decorator: report CourrierError on stderr and exit 1."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except CourrierError as e:
            err(f"Error: {e}")
            sys.exit(1)
    return wrapper


class AliasGroup(click.Group):
    """Group whose subcommands also answer to short names, shown in --help."""

    def __init__(self, *args, aliases: dict[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.aliases = dict(aliases or {})

    def canonical(self, name: str) -> str:
        return self.aliases.get(name, name)

    def aliases_of(self, name: str) -> list[str]:
        return sorted(a for a, target in self.aliases.items() if target == name)

    def get_command(self, ctx, cmd_name):
        return super().get_command(ctx, self.canonical(cmd_name))

    def resolve_command(self, ctx, args):
        # Report the full name so ctx.info_name and error messages use it
        name, cmd, rest = super().resolve_command(ctx, args)
        return self.canonical(name) if name else name, cmd, rest

    def format_commands(self, ctx, formatter):
        entries = []
        for name in self.list_commands(ctx):
            cmd = self.get_command(ctx, name)
            if cmd is None or cmd.hidden:
                continue
            short = self.aliases_of(name)
            label = f"{name} ({', '.join(short)})" if short else name
            entries.append((label, cmd.get_short_help_str(limit=formatter.width)))
        if entries:
            with formatter.section("Commands"):
                formatter.write_dl(entries)
