"""Persistent ledger of fetched messages and fetch runs.

This is the authoritative record of which messages have been saved:
- fetched_emails: (account_email, mailbox, uid) -> file_path, size_bytes, fetched_at
- fetch_history: one row per (account, mailbox) processed in a run

The ledger is shared between the background fetch run and the web/status
layer. A single connection is used from several threads; every public method
takes the lock for one short statement batch and releases it before
returning, so no lock is ever held across network I/O.
"""

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .errors import PersistenceError
from .utils import format_ts, parse_ts, utcnow

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATUSES = (COMPLETED, FAILED)


@dataclass
class SyncedMessage:
    """Record of a saved message."""
    account_email: str
    mailbox: str
    uid: int
    file_path: str
    size_bytes: int
    fetched_at: datetime | None


@dataclass
class RunRecord:
    """One (account, mailbox) pass of a fetch run."""
    id: int
    account_email: str
    mailbox: str
    started_at: datetime | None
    completed_at: datetime | None
    messages_fetched: int
    status: str  # 'running', 'completed', 'failed'

    @property
    def is_running(self) -> bool:
        return self.completed_at is None and self.status == RUNNING


@dataclass
class MailboxStats:
    """Aggregate of saved messages for one (account, mailbox)."""
    account_email: str
    mailbox: str
    count: int
    total_bytes: int
    last_fetched_at: datetime | None


@dataclass
class TotalStats:
    count: int
    total_bytes: int


class Ledger:
    """SQLite-backed fetch ledger, safe to share between threads."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and create schema if needed. No-op when already open."""
        if self._conn is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, timeout=30.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")  # readers don't block the writer
        self._create_schema()

    def disconnect(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.disconnect()

    def _create_schema(self) -> None:
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS fetched_emails (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_email TEXT NOT NULL,
                    mailbox TEXT NOT NULL,
                    uid INTEGER NOT NULL,
                    file_path TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    fetched_at TEXT NOT NULL,
                    UNIQUE(account_email, mailbox, uid)
                );

                CREATE INDEX IF NOT EXISTS idx_fetched_emails_lookup
                    ON fetched_emails(account_email, mailbox, uid);

                CREATE INDEX IF NOT EXISTS idx_fetched_emails_stats
                    ON fetched_emails(account_email, mailbox);

                CREATE TABLE IF NOT EXISTS fetch_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_email TEXT NOT NULL,
                    mailbox TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    messages_fetched INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'running'
                );

                CREATE INDEX IF NOT EXISTS idx_fetch_history_started
                    ON fetch_history(started_at DESC);
            """)
            self.conn.commit()

    # -------------------------------------------------------------------------
    # Fetched messages
    # -------------------------------------------------------------------------

    def is_fetched(self, account_email: str, mailbox: str, uid: int) -> bool:
        with self._lock:
            cur = self.conn.execute("""
                SELECT 1 FROM fetched_emails
                WHERE account_email = ? AND mailbox = ? AND uid = ?
                LIMIT 1
            """, (account_email, mailbox, uid))
            return cur.fetchone() is not None

    def mark_fetched(
        self,
        account_email: str,
        mailbox: str,
        uid: int,
        file_path: str | Path,
        size_bytes: int,
    ) -> None:
        """Record a saved message. Re-recording the same key overwrites it.

        Raises PersistenceError if the write fails.
        """
        now = format_ts(utcnow())
        try:
            with self._lock:
                self.conn.execute("""
                    INSERT INTO fetched_emails
                        (account_email, mailbox, uid, file_path, size_bytes, fetched_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(account_email, mailbox, uid) DO UPDATE SET
                        file_path = excluded.file_path,
                        size_bytes = excluded.size_bytes,
                        fetched_at = excluded.fetched_at
                """, (account_email, mailbox, uid, str(file_path), size_bytes, now))
                self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to record UID {uid} in ledger: {e}") from e

    def fetched_uids(self, account_email: str, mailbox: str) -> set[int]:
        """All UIDs recorded for this account/mailbox."""
        with self._lock:
            cur = self.conn.execute("""
                SELECT uid FROM fetched_emails
                WHERE account_email = ? AND mailbox = ?
            """, (account_email, mailbox))
            return {row["uid"] for row in cur}

    def get_message(self, account_email: str, mailbox: str, uid: int) -> SyncedMessage | None:
        with self._lock:
            cur = self.conn.execute("""
                SELECT * FROM fetched_emails
                WHERE account_email = ? AND mailbox = ? AND uid = ?
            """, (account_email, mailbox, uid))
            row = cur.fetchone()
        if not row:
            return None
        return SyncedMessage(
            account_email=row["account_email"],
            mailbox=row["mailbox"],
            uid=row["uid"],
            file_path=row["file_path"],
            size_bytes=row["size_bytes"],
            fetched_at=parse_ts(row["fetched_at"]),
        )

    def stats(self) -> list[MailboxStats]:
        """Per (account, mailbox) counts and sizes."""
        with self._lock:
            cur = self.conn.execute("""
                SELECT
                    account_email,
                    mailbox,
                    COUNT(*) AS count,
                    SUM(size_bytes) AS total_bytes,
                    MAX(fetched_at) AS last_fetch
                FROM fetched_emails
                GROUP BY account_email, mailbox
                ORDER BY account_email, mailbox
            """)
            rows = cur.fetchall()
        return [
            MailboxStats(
                account_email=row["account_email"],
                mailbox=row["mailbox"],
                count=row["count"],
                total_bytes=row["total_bytes"] or 0,
                last_fetched_at=parse_ts(row["last_fetch"]),
            )
            for row in rows
        ]

    def total_stats(self) -> TotalStats:
        with self._lock:
            cur = self.conn.execute("""
                SELECT COUNT(*) AS count, SUM(size_bytes) AS total_bytes
                FROM fetched_emails
            """)
            row = cur.fetchone()
        return TotalStats(count=row["count"], total_bytes=row["total_bytes"] or 0)

    # -------------------------------------------------------------------------
    # Fetch runs
    # -------------------------------------------------------------------------

    def start_run(self, account_email: str, mailbox: str) -> int:
        """Insert a 'running' record and return its ID."""
        now = format_ts(utcnow())
        with self._lock:
            cur = self.conn.execute("""
                INSERT INTO fetch_history (account_email, mailbox, started_at, status)
                VALUES (?, ?, ?, 'running')
            """, (account_email, mailbox, now))
            self.conn.commit()
            return cur.lastrowid

    def complete_run(self, run_id: int, messages_fetched: int, status: str) -> None:
        """Move a running record to its terminal status.

        Terminal records are never changed again; completing one is a no-op.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Invalid terminal status: {status}")
        now = format_ts(utcnow())
        with self._lock:
            self.conn.execute("""
                UPDATE fetch_history
                SET completed_at = ?, messages_fetched = ?, status = ?
                WHERE id = ? AND status = 'running'
            """, (now, messages_fetched, status, run_id))
            self.conn.commit()

    def abandon_running_runs(self) -> int:
        """Mark runs left 'running' by a previous process as failed.

        Returns:
            Number of runs marked as failed
        """
        now = format_ts(utcnow())
        with self._lock:
            cur = self.conn.execute("""
                UPDATE fetch_history
                SET status = 'failed', completed_at = ?
                WHERE status = 'running'
            """, (now,))
            self.conn.commit()
            return cur.rowcount

    def get_run(self, run_id: int) -> RunRecord | None:
        with self._lock:
            cur = self.conn.execute("SELECT * FROM fetch_history WHERE id = ?", (run_id,))
            row = cur.fetchone()
        return self._row_to_run(row) if row else None

    def latest_run(self) -> RunRecord | None:
        """Most recently started run record, if any."""
        runs = self.recent_runs(limit=1)
        return runs[0] if runs else None

    def recent_runs(self, limit: int = 20) -> list[RunRecord]:
        """Run records, most recent first."""
        with self._lock:
            cur = self.conn.execute("""
                SELECT * FROM fetch_history
                ORDER BY started_at DESC, id DESC
                LIMIT ?
            """, (limit,))
            rows = cur.fetchall()
        return [self._row_to_run(row) for row in rows]

    def _row_to_run(self, row: sqlite3.Row) -> RunRecord:
        return RunRecord(
            id=row["id"],
            account_email=row["account_email"],
            mailbox=row["mailbox"],
            started_at=parse_ts(row["started_at"]),
            completed_at=parse_ts(row["completed_at"]),
            messages_fetched=row["messages_fetched"] or 0,
            status=row["status"],
        )
