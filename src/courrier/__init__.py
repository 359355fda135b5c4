"""Incremental IMAP mail archiver."""

from .config import AccountConfig, CourrierConfig, load_config
from .coordinator import FetchCoordinator, FetchStatus, TriggerResult
from .ledger import Ledger, RunRecord
from .scheduler import FetchScheduler

__all__ = [
    "AccountConfig",
    "CourrierConfig",
    "FetchCoordinator",
    "FetchScheduler",
    "FetchStatus",
    "Ledger",
    "RunRecord",
    "TriggerResult",
    "load_config",
]
