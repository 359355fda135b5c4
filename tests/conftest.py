"""Shared fixtures: an in-memory IMAP server patched in for imaplib.IMAP4_SSL."""

import imaplib
from pathlib import Path

import pytest

from courrier.config import AccountConfig
from courrier.ledger import Ledger


def make_message(n: int) -> bytes:
    return f"Subject: message {n}\r\nFrom: a@x.com\r\n\r\nbody of message {n}\r\n".encode()


class FakeMailServer:
    """Server-side state shared by every connection opened during a test."""

    def __init__(self):
        self.mailboxes: dict[str, dict[int, bytes]] = {}
        self.list_flags: dict[str, str] = {}
        self.deleted: set[tuple[str, int]] = set()
        self.valid_logins: set[tuple[str, str]] = set()
        # Behaviour knobs
        self.refuse_connections = False
        self.unselectable: set[str] = set()
        self.readonly_only: set[str] = set()
        self.peek_fails: set[int] = set()
        self.peek_empty: set[int] = set()
        self.full_fails: set[int] = set()
        self.full_empty: set[int] = set()
        self.drop_on_fetch: set[int] = set()
        self.fetch_hook = None
        # Observations
        self.connections = 0
        self.logins: list[str] = []
        self.logouts = 0
        self.fetch_log: list[tuple[str, int, str]] = []
        self.selects: list[tuple[str, bool]] = []

    def add_mailbox(self, name: str, uids=(), flags: str = "\\HasNoChildren"):
        self.mailboxes[name] = {uid: make_message(uid) for uid in uids}
        self.list_flags[name] = flags
        return self.mailboxes[name]

    def fetched_uids(self, item: str | None = None) -> list[int]:
        return [uid for _, uid, it in self.fetch_log if item is None or it == item]


class FakeIMAP4_SSL:
    """Just enough of imaplib.IMAP4_SSL for IMAPSession."""

    def __init__(self, server: FakeMailServer, host, port=993, ssl_context=None, timeout=None):
        if server.refuse_connections:
            raise ConnectionRefusedError(111, "Connection refused")
        server.connections += 1
        self.server = server
        self.host = host
        self.port = port
        self.timeout = timeout
        self.user = None
        self.selected = None
        self.consumed = False

    def _require_auth(self, what):
        if self.consumed:
            raise imaplib.IMAP4.abort(f"{what}: connection closed")
        if self.user is None:
            raise imaplib.IMAP4.error(f"command {what} illegal in state NONAUTH")

    def login(self, user, password):
        self.server.logins.append(user)
        if self.consumed:
            raise imaplib.IMAP4.abort("LOGIN: connection closed")
        if (user, password) not in self.server.valid_logins:
            self.consumed = True
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials (Failure)")
        self.user = user
        return "OK", [b"LOGIN completed"]

    def logout(self):
        self.server.logouts += 1
        return "BYE", [b"Logging out"]

    def list(self, directory='""', pattern="*"):
        self._require_auth("LIST")
        lines = []
        for name in self.server.mailboxes:
            flags = self.server.list_flags.get(name, "")
            lines.append(f'({flags}) "/" "{name}"'.encode())
        return "OK", lines

    def select(self, mailbox="INBOX", readonly=False):
        self._require_auth("SELECT")
        name = mailbox.strip('"')
        self.server.selects.append((name, readonly))
        if name in self.server.unselectable or name not in self.server.mailboxes:
            return "NO", [b"[NONEXISTENT] Unknown Mailbox"]
        self.selected = name
        if name in self.server.readonly_only and not readonly:
            # imaplib's reaction to "OK [READ-ONLY]" on a read/write SELECT
            raise imaplib.IMAP4.readonly(f"{mailbox} is not writable")
        return "OK", [str(len(self.server.mailboxes[name])).encode()]

    def uid(self, command, *args):
        self._require_auth(f"UID {command}")
        if self.selected is None:
            raise imaplib.IMAP4.error(f"command UID {command} illegal in state AUTH")
        messages = self.server.mailboxes[self.selected]
        if command == "SEARCH":
            uids = [uid for uid in messages if (self.selected, uid) not in self.server.deleted]
            return "OK", [" ".join(str(u) for u in uids).encode()]
        if command == "FETCH":
            uid_str, items = args
            uid = int(uid_str)
            item = items.strip("()")
            self.server.fetch_log.append((self.selected, uid, item))
            if self.server.fetch_hook:
                self.server.fetch_hook(uid)
            if uid in self.server.drop_on_fetch:
                raise imaplib.IMAP4.abort("socket error: EOF")
            if item == "BODY.PEEK[]":
                fails, empty = self.server.peek_fails, self.server.peek_empty
            else:
                fails, empty = self.server.full_fails, self.server.full_empty
            if uid in fails:
                return "NO", [b"FETCH failed"]
            body = messages.get(uid)
            if uid in empty or body is None:
                return "OK", [None]
            return "OK", [(f"{uid} (UID {uid} BODY[] {{{len(body)}}}".encode(), body), b")"]
        raise imaplib.IMAP4.error(f"Unknown UID command {command}")


@pytest.fixture
def mail_server(monkeypatch):
    server = FakeMailServer()

    def factory(host, port=993, ssl_context=None, timeout=None):
        return FakeIMAP4_SSL(server, host, port, ssl_context=ssl_context, timeout=timeout)

    monkeypatch.setattr(imaplib, "IMAP4_SSL", factory)
    return server


@pytest.fixture
def account(mail_server):
    mail_server.valid_logins.add(("a@x.com", "secret"))
    return AccountConfig(
        email="a@x.com",
        username="a@x.com",
        password="secret",
        host="imap.example.com",
        port=993,
    )


@pytest.fixture
def ledger(tmp_path):
    ledger = Ledger(tmp_path / "courrier.db")
    ledger.connect()
    yield ledger
    ledger.disconnect()


@pytest.fixture
def storage(tmp_path) -> Path:
    path = tmp_path / "emails"
    path.mkdir()
    return path
