"""Thin IMAP session wrapper around imaplib."""

import imaplib
import re
import ssl

from .errors import ProtocolError, TransportError

GMAIL_IMAP_HOST = "imap.gmail.com"
IMAP_SSL_PORT = 993

PEEK_ITEM = "BODY.PEEK[]"
FULL_ITEM = "RFC822"

# Parse: b'(\\HasNoChildren) "/" "INBOX"' or b'(\\Noselect) NIL Archive'
LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.*)$')

# Errors that mean the connection itself is gone, as opposed to a NO/BAD reply.
# IMAP4.readonly subclasses abort but leaves the connection usable.
CONNECTION_ERRORS = (imaplib.IMAP4.abort, OSError)


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for SELECT/EXAMINE (imaplib does not)."""
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: bytes) -> str:
    text = value.decode("utf-8", errors="replace").strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return text


def parse_list_response(data: list) -> list[tuple[str, str | None, str]]:
    """Parse LIST response items into [(flags, delimiter, name), ...].

    Names sent as literals arrive as (prefix, name) tuples.
    """
    folders = []
    for item in data:
        if item is None:
            continue
        literal = None
        if isinstance(item, tuple):
            item, literal = item[0], item[1]
        if isinstance(item, str):
            item = item.encode()
        match = LIST_RE.match(item.strip())
        if not match:
            continue
        flags = match.group("flags").decode(errors="replace")
        delim_raw = match.group("delim")
        delim = None if delim_raw == b"NIL" else _unquote(delim_raw)
        if literal is not None:
            name = literal.decode("utf-8", errors="replace") if isinstance(literal, bytes) else literal
        else:
            name = _unquote(match.group("name"))
        folders.append((flags, delim, name))
    return folders


def extract_body(data: list | None) -> bytes | None:
    """Pull the message literal out of a UID FETCH response, if any."""
    for part in data or []:
        if isinstance(part, tuple) and len(part) >= 2 and isinstance(part[1], (bytes, bytearray)):
            return bytes(part[1])
    return None


class IMAPSession:
    """An open TLS IMAP connection.

    Single-use and not re-entrant: one command at a time, one thread at a time.
    """

    def __init__(self, host: str, port: int = IMAP_SSL_PORT, timeout: float | None = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._conn: imaplib.IMAP4_SSL | None = None

    def open(self) -> "IMAPSession":
        """Open the TLS connection (default trust store)."""
        try:
            self._conn = imaplib.IMAP4_SSL(
                self.host,
                self.port,
                ssl_context=ssl.create_default_context(),
                timeout=self.timeout,
            )
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransportError(f"Failed to connect to {self.host}:{self.port}: {e}") from e
        return self

    @property
    def conn(self) -> imaplib.IMAP4_SSL:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    def login(self, user: str, password: str) -> None:
        """Log in; imaplib.IMAP4.error on rejection, TransportError if the link drops."""
        self._command("LOGIN", self.conn.login, user, password)

    def logout(self) -> None:
        """Best-effort logout; errors are ignored."""
        if self._conn:
            try:
                self._conn.logout()
            except Exception:
                pass
            self._conn = None

    def _command(self, what: str, fn, *args):
        """Run an imaplib call, mapping connection loss to TransportError."""
        try:
            return fn(*args)
        except imaplib.IMAP4.readonly:
            raise
        except CONNECTION_ERRORS as e:
            raise TransportError(f"{what} on {self.host}: connection lost: {e}") from e

    def list_folders(self) -> list[tuple[str, str | None, str]]:
        """List all folders. Returns [(flags, delimiter, name), ...]."""
        try:
            typ, data = self._command("LIST", self.conn.list, '""', "*")
        except imaplib.IMAP4.error as e:
            raise ProtocolError(f"Failed to list mailboxes: {e}") from e
        if typ != "OK":
            raise ProtocolError(f"Failed to list mailboxes: {data}")
        return parse_list_response(data)

    def list_mailboxes(self) -> list[str]:
        """Mailbox names in server order, unfiltered."""
        return [name for _, _, name in self.list_folders()]

    def select_mailbox(self, mailbox: str) -> tuple[int, bool]:
        """SELECT read/write, falling back to EXAMINE.

        imaplib raises IMAP4.readonly when SELECT opens a mailbox read-only;
        that also falls through to EXAMINE.

        Returns (message count, readonly).
        """
        for readonly in (False, True):
            try:
                typ, data = self._command("SELECT", self.conn.select, quote_mailbox(mailbox), readonly)
            except imaplib.IMAP4.error:
                continue
            if typ == "OK":
                try:
                    count = int(data[0])
                except (TypeError, ValueError, IndexError):
                    count = 0
                return count, readonly
        raise ProtocolError(f"Failed to select or examine mailbox {mailbox}")

    def search_uids(self, criteria: str = "NOT DELETED") -> list[int]:
        """UID SEARCH; UIDs in server-returned order."""
        try:
            typ, data = self._command("SEARCH", self.conn.uid, "SEARCH", None, criteria)
        except imaplib.IMAP4.error as e:
            raise ProtocolError(f"Search failed: {e}") from e
        if typ != "OK":
            raise ProtocolError(f"Search failed: {data}")
        if not data or not data[0]:
            return []
        return [int(u) for u in data[0].split()]

    def fetch_item(self, uid: int, item: str) -> bytes | None:
        """UID FETCH a single data item.

        Returns the body, or None if the server answered without one.
        Raises imaplib.IMAP4.error on NO/BAD, TransportError if the link drops.
        """
        typ, data = self._command("FETCH", self.conn.uid, "FETCH", str(uid), f"({item})")
        if typ != "OK":
            raise imaplib.IMAP4.error(f"UID FETCH {uid} {item} returned {typ}: {data}")
        return extract_body(data)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.logout()
