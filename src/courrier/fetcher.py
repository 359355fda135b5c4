"""Per-mailbox incremental fetch: diff server UIDs against the ledger, save the rest."""

import imaplib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .config import AccountConfig
from .errors import FetchError, PersistenceError
from .imap import FULL_ITEM, PEEK_ITEM, IMAPSession
from .ledger import Ledger
from .utils import err


@dataclass
class SyncResult:
    saved: int = 0
    failed: int = 0


def account_dir_name(email: str) -> str:
    return email.replace("@", "_")


def message_path(storage_root: Path, email: str, mailbox: str, uid: int) -> Path:
    """{storage_root}/{email with @ -> _}/{mailbox}/{uid}.eml"""
    return Path(storage_root) / account_dir_name(email) / mailbox / f"{uid}.eml"


def fetch_body(session: IMAPSession, uid: int) -> bytes:
    """Fetch a message body, preferring BODY.PEEK[] (leaves \\Seen alone).

    Falls back to RFC822 if the peek errors or comes back without a body.
    Raises FetchError if neither yields one; TransportError propagates.
    """
    try:
        body = session.fetch_item(uid, PEEK_ITEM)
    except imaplib.IMAP4.error:
        body = None
    if body is not None:
        return body

    try:
        body = session.fetch_item(uid, FULL_ITEM)
    except imaplib.IMAP4.error as e:
        raise FetchError(uid, FetchError.ERRORED, str(e)) from e
    if body is None:
        raise FetchError(uid, FetchError.NO_BODY)
    return body


def save_message(path: Path, body: bytes) -> None:
    """Write raw bytes, creating directories. Raises PersistenceError."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
    except OSError as e:
        raise PersistenceError(f"Failed to save {path}: {e}") from e


def sync_mailbox(
    session: IMAPSession,
    identity: AccountConfig,
    mailbox: str,
    ledger: Ledger,
    storage_root: Path,
    should_stop: Callable[[], bool] | None = None,
    on_saved: Callable[[], None] | None = None,
) -> SyncResult:
    """Save every not-deleted message in ``mailbox`` that the ledger doesn't have.

    Messages are processed one at a time in server order; each ledger record
    is written only after its file. Per-message failures are counted and
    skipped. ProtocolError (select/search) and TransportError propagate. The
    session is logged out on return.
    """
    result = SyncResult()
    try:
        err(f"Selecting mailbox: {mailbox}...")
        count, readonly = session.select_mailbox(mailbox)
        mode = " (read-only)" if readonly else ""
        err(f"Selected {mailbox}{mode} ({count} messages)")

        server_uids = session.search_uids("NOT DELETED")
        prior_uids = ledger.fetched_uids(identity.email, mailbox)
        to_fetch = [uid for uid in server_uids if uid not in prior_uids]
        err(f"Already fetched: {len(prior_uids)}, New to fetch: {len(to_fetch)}")

        if not to_fetch:
            return result

        for i, uid in enumerate(to_fetch, start=1):
            if should_stop and should_stop():
                err(f"Stopping {identity.email}/{mailbox} after {i - 1}/{len(to_fetch)}")
                break
            path = message_path(storage_root, identity.email, mailbox, uid)
            try:
                body = fetch_body(session, uid)
                save_message(path, body)
                ledger.mark_fetched(identity.email, mailbox, uid, path, len(body))
            except (FetchError, PersistenceError) as e:
                err(f"✗ {identity.email}/{mailbox} UID {uid}: {e}")
                result.failed += 1
                continue
            result.saved += 1
            if on_saved:
                on_saved()

        err(f"✓ {identity.email}/{mailbox}: {result.saved} saved, {result.failed} failed")
        return result
    finally:
        session.logout()
