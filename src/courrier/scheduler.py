"""Startup and periodic fetch triggering."""

from apscheduler.schedulers.background import BackgroundScheduler

from .coordinator import STARTED, FetchCoordinator
from .utils import err

PERIODIC_JOB_ID = "periodic_fetch"


class FetchScheduler:
    """Triggers the coordinator on startup and/or every N seconds.

    Triggers that land while a run is in flight are no-ops (single-flight).
    """

    def __init__(
        self,
        coordinator: FetchCoordinator,
        interval_seconds: int | None = None,
        fetch_on_startup: bool = True,
    ):
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.fetch_on_startup = fetch_on_startup
        self._scheduler = BackgroundScheduler()

    def periodic_fetch(self) -> None:
        err(f"Periodic fetch triggered (interval: {self.interval_seconds}s)")
        result = self.coordinator.trigger()
        if result.status != STARTED:
            err("Previous fetch still running, skipping this tick")

    def start(self) -> None:
        if self.fetch_on_startup:
            err("Starting initial fetch on startup...")
            self.coordinator.trigger()

        if self.interval_seconds:
            # First periodic run is one interval out; startup fetch covers "now"
            self._scheduler.add_job(
                self.periodic_fetch,
                "interval",
                seconds=self.interval_seconds,
                id=PERIODIC_JOB_ID,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            self._scheduler.start()
            err(f"Periodic fetch enabled: every {self.interval_seconds} seconds")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
