"""Session establishment with provider-specific username fallback.

Some providers reject ``user@domain`` but accept the bare local part (or the
other way round). A failed LOGIN consumes the connection, so a retry needs a
fresh one. Which hosts get a retry, and with what username, is decided by a
``UsernameNormalizer`` looked up by host.
"""

import imaplib
from typing import Callable, Mapping

from .config import AccountConfig
from .errors import AuthError
from .imap import GMAIL_IMAP_HOST, IMAPSession
from .utils import err

# Returns an alternative username to retry with, or None for no retry
UsernameNormalizer = Callable[[str], "str | None"]

GMAIL_HINT = """\
Gmail troubleshooting:
1. Ensure IMAP is enabled in Gmail settings
2. Use an App-Specific Password (not your regular password)
   Generate one at: https://myaccount.google.com/apppasswords
3. If 2FA is disabled, enable it first (required for app passwords)
4. App passwords are 16 characters (may include spaces)"""


def strip_domain(username: str) -> str | None:
    """'a@x.com' -> 'a'; None if there is no '@'."""
    if "@" not in username:
        return None
    return username.split("@", 1)[0]


DEFAULT_NORMALIZERS: dict[str, UsernameNormalizer] = {
    GMAIL_IMAP_HOST: strip_domain,
}

SessionFactory = Callable[[str, int, "float | None"], IMAPSession]


def open_session(host: str, port: int, timeout: float | None = None) -> IMAPSession:
    return IMAPSession(host, port, timeout=timeout).open()


def _try_login(session: IMAPSession, username: str, password: str) -> Exception | None:
    try:
        session.login(username, password)
    except imaplib.IMAP4.error as e:
        session.logout()
        return e
    return None


def connect(
    identity: AccountConfig,
    normalizers: Mapping[str, UsernameNormalizer] | None = None,
    timeout: float | None = None,
    session_factory: SessionFactory = open_session,
) -> IMAPSession:
    """Open a TLS session and authenticate.

    Raises TransportError if a connection can't be opened, AuthError if login
    is rejected (after at most one normalized-username retry).
    """
    normalizers = DEFAULT_NORMALIZERS if normalizers is None else normalizers
    host, port = identity.host, identity.port

    err(f"Connecting to {host}:{port}")
    session = session_factory(host, port, timeout)
    err(f"Logging in as {identity.email} (username: {identity.username})")

    attempts: list[tuple[str, Exception]] = []
    error = _try_login(session, identity.username, identity.password)
    if error is None:
        return session
    attempts.append((identity.username, error))

    normalize = normalizers.get(host.lower())
    alt_username = normalize(identity.username) if normalize else None
    if alt_username and alt_username != identity.username:
        err(f"First attempt failed, reconnecting and trying with username: {alt_username}")
        session = session_factory(host, port, timeout)
        error = _try_login(session, alt_username, identity.password)
        if error is None:
            err(f"Logged in with username {alt_username}")
            return session
        attempts.append((alt_username, error))

    auth_error = AuthError(identity.email, attempts)
    err(str(auth_error))
    if host.lower() == GMAIL_IMAP_HOST:
        err(GMAIL_HINT)
    raise auth_error
