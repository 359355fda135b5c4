"""Configuration loading from config.yaml."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigError

CONFIG_FILE = "config.yaml"
CONFIG_ENV = "COURRIER_CONFIG"
DEFAULT_PORT = 993
DEFAULT_STORAGE_PATH = "emails"
DEFAULT_DB_PATH = "courrier.db"
DEFAULT_TIMEOUT = 60.0
DEFAULT_WEB_HOST = "0.0.0.0"
DEFAULT_WEB_PORT = 3000

EXAMPLE_CONFIG = """\
email_storage_path: emails
fetch_interval_seconds: 3600
fetch_on_startup: true
servers:
  - host: imap.mail.me.com
    port: 993
    accounts:
      - email: your-email@example.com
        username: your-username
        password: your-password
  - host: imap.gmail.com
    accounts:
      - email: gmail-account@gmail.com
        password_env: GMAIL_APP_PASSWORD
"""


@dataclass(frozen=True)
class AccountConfig:
    """An IMAP account, flattened with its server."""
    email: str
    username: str
    password: str = field(repr=False)
    host: str
    port: int = DEFAULT_PORT


@dataclass
class WebConfig:
    host: str = DEFAULT_WEB_HOST
    port: int = DEFAULT_WEB_PORT


@dataclass
class CourrierConfig:
    """Top-level configuration."""
    accounts: list[AccountConfig] = field(default_factory=list)
    email_storage_path: Path = Path(DEFAULT_STORAGE_PATH)
    db_path: Path = Path(DEFAULT_DB_PATH)
    fetch_interval_seconds: int | None = None
    fetch_on_startup: bool = True
    network_timeout_seconds: float | None = DEFAULT_TIMEOUT
    account_workers: int = 1
    web: WebConfig = field(default_factory=WebConfig)


def get_config_path(path: str | Path | None = None) -> Path:
    """Resolve config path: explicit, then $COURRIER_CONFIG, then ./config.yaml."""
    if path:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / CONFIG_FILE


def _resolve_password(acct: dict, email: str) -> str:
    if acct.get("password"):
        return str(acct["password"])
    env_name = acct.get("password_env")
    if env_name:
        password = os.environ.get(env_name)
        if not password:
            raise ConfigError(f"Account {email}: environment variable {env_name} is not set")
        return password
    raise ConfigError(f"Account {email}: no password or password_env")


def parse_accounts(servers: list) -> list[AccountConfig]:
    """Flatten servers[].accounts[] into AccountConfig entries, in file order."""
    accounts = []
    for i, server in enumerate(servers or []):
        host = server.get("host")
        if not host:
            raise ConfigError(f"servers[{i}]: missing host")
        port = int(server.get("port", DEFAULT_PORT))
        for acct in server.get("accounts") or []:
            email = acct.get("email")
            if not email:
                raise ConfigError(f"servers[{i}] ({host}): account missing email")
            accounts.append(AccountConfig(
                email=email,
                username=acct.get("username") or email,
                password=_resolve_password(acct, email),
                host=host,
                port=port,
            ))
    return accounts


def load_config(path: str | Path | None = None) -> CourrierConfig:
    """Load and validate config.yaml.

    Relative storage/db paths are resolved against the config file's directory.
    """
    config_path = get_config_path(path)
    if not config_path.exists():
        raise ConfigError(
            f"Config file not found: {config_path}\n"
            f"Create one like:\n\n{EXAMPLE_CONFIG}"
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: expected a mapping at top level")

    accounts = parse_accounts(data.get("servers", []))
    if not accounts:
        raise ConfigError(f"No accounts found in {config_path}")

    base = config_path.resolve().parent
    web_data = data.get("web") or {}
    interval = data.get("fetch_interval_seconds")
    timeout = data.get("network_timeout_seconds", DEFAULT_TIMEOUT)

    return CourrierConfig(
        accounts=accounts,
        email_storage_path=base / data.get("email_storage_path", DEFAULT_STORAGE_PATH),
        db_path=base / data.get("db_path", DEFAULT_DB_PATH),
        fetch_interval_seconds=int(interval) if interval else None,
        fetch_on_startup=bool(data.get("fetch_on_startup", True)),
        network_timeout_seconds=float(timeout) if timeout else None,
        account_workers=max(1, int(data.get("account_workers", 1))),
        web=WebConfig(
            host=web_data.get("host", DEFAULT_WEB_HOST),
            port=int(web_data.get("port", DEFAULT_WEB_PORT)),
        ),
    )
