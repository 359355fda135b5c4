"""Single-flight fetch coordinator.

At most one run is in flight per process. ``trigger()`` does an atomic
check-and-set on the run handle and hands the work to a background executor;
``status()`` only touches the handle lock and the ledger, so it stays
responsive while a run is blocked on the network.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Mapping

from .auth import UsernameNormalizer, connect
from .config import AccountConfig, CourrierConfig
from .errors import AuthError, CourrierError, TransportError
from .fetcher import sync_mailbox
from .imap import IMAPSession
from .ledger import COMPLETED, FAILED, Ledger, RunRecord
from .utils import err, format_ts, utcnow

STARTED = "started"
ALREADY_RUNNING = "already_running"

# Mailbox name recorded when an account fails before its mailboxes are known
ACCOUNT_SCOPE = "*"

Connector = Callable[[AccountConfig], IMAPSession]


@dataclass
class TriggerResult:
    status: str  # 'started' or 'already_running'

    @property
    def message(self) -> str:
        if self.status == STARTED:
            return "Fetch operation started (all mailboxes will be fetched)"
        return "A fetch operation is already in progress"

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message}


@dataclass
class FetchStatus:
    """Snapshot of the current (or last) run."""
    is_running: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    messages_fetched: int = 0

    @classmethod
    def from_record(cls, record: RunRecord | None) -> "FetchStatus":
        if record is None:
            return cls()
        return cls(
            is_running=record.is_running,
            started_at=record.started_at,
            completed_at=record.completed_at,
            messages_fetched=record.messages_fetched,
        )

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "started_at": format_ts(self.started_at),
            "completed_at": format_ts(self.completed_at),
            "messages_fetched": self.messages_fetched,
        }


@dataclass
class StatsReport:
    per_account_mailbox: list[dict] = field(default_factory=list)
    total_emails: int = 0
    total_bytes: int = 0

    def to_dict(self) -> dict:
        return {
            "per_account_mailbox": self.per_account_mailbox,
            "total_emails": self.total_emails,
            "total_bytes": self.total_bytes,
        }


@dataclass
class RunSummary:
    saved: int = 0
    failed: int = 0
    failed_mailboxes: int = 0


@dataclass
class RunHandle:
    """The in-flight run: its future, start time, and live saved count."""
    future: Future
    started_at: datetime
    saved: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add_saved(self, n: int = 1) -> None:
        with self._lock:
            self.saved += n

    def done(self) -> bool:
        return self.future.done()


def group_accounts(accounts: list[AccountConfig]) -> list[dict]:
    """Group accounts by host:port, in config order. Never includes passwords."""
    servers: dict[str, dict] = {}
    for acct in accounts:
        key = f"{acct.host}:{acct.port}"
        server = servers.setdefault(key, {"host": acct.host, "port": acct.port, "accounts": []})
        server["accounts"].append({"email": acct.email, "host": acct.host, "port": acct.port})
    return list(servers.values())


class FetchCoordinator:
    """Runs fetches over all configured accounts, one run at a time."""

    def __init__(
        self,
        accounts: list[AccountConfig],
        ledger: Ledger,
        storage_root: Path,
        timeout: float | None = None,
        account_workers: int = 1,
        normalizers: Mapping[str, UsernameNormalizer] | None = None,
        connector: Connector | None = None,
    ):
        self.accounts = list(accounts)
        self.ledger = ledger
        self.storage_root = Path(storage_root)
        self.account_workers = max(1, account_workers)
        self._connector = connector or (
            lambda identity: connect(identity, normalizers=normalizers, timeout=timeout)
        )
        self._handle: RunHandle | None = None
        self._handle_lock = threading.Lock()
        self._stop = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="courrier-fetch")

    @classmethod
    def from_config(cls, config: CourrierConfig, ledger: Ledger) -> "FetchCoordinator":
        return cls(
            accounts=config.accounts,
            ledger=ledger,
            storage_root=config.email_storage_path,
            timeout=config.network_timeout_seconds,
            account_workers=config.account_workers,
        )

    # -------------------------------------------------------------------------
    # Control surface
    # -------------------------------------------------------------------------

    def recover_stale_runs(self) -> int:
        """Fail run records a previous process left 'running'.

        Call once at startup, before the first trigger.
        """
        abandoned = self.ledger.abandon_running_runs()
        if abandoned:
            err(f"Marked {abandoned} unfinished run(s) from a previous process as failed")
        return abandoned

    def trigger(self) -> TriggerResult:
        """Start a run unless one is already in flight."""
        return self._start()[0]

    def run_now(self) -> RunSummary:
        """Start a run and block until it finishes. Raises if one is already running."""
        result, handle = self._start()
        if handle is None:
            raise RuntimeError(result.message)
        return handle.future.result()

    def _start(self) -> tuple[TriggerResult, RunHandle | None]:
        with self._handle_lock:
            if self._handle is not None and not self._handle.done():
                return TriggerResult(ALREADY_RUNNING), None
            if self._stop.is_set():
                raise RuntimeError("Coordinator is shut down")
            handle = RunHandle(future=Future(), started_at=utcnow())
            self._handle = handle
        # The run itself executes outside the lock
        try:
            self._executor.submit(self._execute, handle)
        except RuntimeError as e:
            # Executor shut down between the check and the submit
            with self._handle_lock:
                if self._handle is handle:
                    self._handle = None
            handle.future.set_exception(e)
            raise
        return TriggerResult(STARTED), handle

    def status(self) -> FetchStatus:
        with self._handle_lock:
            handle = self._handle
            if handle is not None and handle.done():
                self._handle = None
        if handle is None or handle.done():
            return FetchStatus.from_record(self.ledger.latest_run())
        # Ledger counts land at completion; report the run's live count meanwhile
        return FetchStatus(is_running=True, started_at=handle.started_at, messages_fetched=handle.saved)

    def stats(self) -> StatsReport:
        rows = self.ledger.stats()
        total = self.ledger.total_stats()
        return StatsReport(
            per_account_mailbox=[
                {
                    "email": s.account_email,
                    "mailbox": s.mailbox,
                    "count": s.count,
                    "bytes": s.total_bytes,
                    "last_fetch": format_ts(s.last_fetched_at),
                }
                for s in rows
            ],
            total_emails=total.count,
            total_bytes=total.total_bytes,
        )

    def list_accounts(self) -> list[dict]:
        return group_accounts(self.accounts)

    def shutdown(self, wait: bool = True) -> None:
        """Ask an in-flight run to stop between messages and shut down the executor."""
        self._stop.set()
        self._executor.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Run execution (background thread)
    # -------------------------------------------------------------------------

    def _execute(self, handle: RunHandle) -> None:
        if not handle.future.set_running_or_notify_cancel():
            return
        try:
            summary = self._run_all(handle)
        except Exception as e:
            err(f"✗ Fetch run crashed: {e!r}")
            handle.future.set_exception(e)
        else:
            handle.future.set_result(summary)

    def _run_all(self, handle: RunHandle) -> RunSummary:
        total = RunSummary()
        if self.account_workers > 1 and len(self.accounts) > 1:
            with ThreadPoolExecutor(max_workers=self.account_workers) as pool:
                summaries = list(pool.map(lambda a: self._run_account(a, handle), self.accounts))
        else:
            summaries = [self._run_account(acct, handle) for acct in self.accounts]
        for s in summaries:
            total.saved += s.saved
            total.failed += s.failed
            total.failed_mailboxes += s.failed_mailboxes
        err(f"✓ Done! Total messages saved: {total.saved}")
        return total

    def _run_account(self, identity: AccountConfig, handle: RunHandle) -> RunSummary:
        summary = RunSummary()
        if self._stop.is_set():
            return summary
        err(f"\n{'=' * 80}\nProcessing account: {identity.email}\n{'=' * 80}")

        try:
            session = self._connector(identity)
            try:
                err("Listing mailboxes...")
                mailboxes = session.list_mailboxes()
            finally:
                session.logout()
        except CourrierError as e:
            err(f"✗ Failed to enumerate mailboxes for {identity.email}: {e}")
            run_id = self.ledger.start_run(identity.email, ACCOUNT_SCOPE)
            self.ledger.complete_run(run_id, 0, FAILED)
            summary.failed_mailboxes += 1
            return summary

        err(f"Found {len(mailboxes)} mailbox(es) for {identity.email}")
        for mailbox in mailboxes:
            if self._stop.is_set():
                break
            err(f"\n--- Fetching from mailbox: {mailbox} ---")
            run_id = self.ledger.start_run(identity.email, mailbox)
            saved = 0

            def on_saved():
                nonlocal saved
                saved += 1
                handle.add_saved()

            try:
                session = self._connector(identity)
                result = sync_mailbox(
                    session,
                    identity,
                    mailbox,
                    self.ledger,
                    self.storage_root,
                    should_stop=self._stop.is_set,
                    on_saved=on_saved,
                )
            except (TransportError, AuthError) as e:
                err(f"✗ Failed to fetch from {identity.email}/{mailbox}: {e}")
                self.ledger.complete_run(run_id, saved, FAILED)
                summary.saved += saved
                summary.failed_mailboxes += 1
                err(f"Skipping remaining mailboxes for {identity.email}")
                break
            except CourrierError as e:
                err(f"✗ Failed to fetch from {identity.email}/{mailbox}: {e}")
                self.ledger.complete_run(run_id, saved, FAILED)
                summary.saved += saved
                summary.failed_mailboxes += 1
                continue
            except Exception:
                self.ledger.complete_run(run_id, saved, FAILED)
                raise

            self.ledger.complete_run(run_id, result.saved, COMPLETED)
            summary.saved += result.saved
            summary.failed += result.failed
        return summary
