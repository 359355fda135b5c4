"""Web dashboard and JSON API for fetch status.

Run with: courrier serve
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from .coordinator import FetchCoordinator
from .errors import CourrierError
from .scheduler import FetchScheduler
from .utils import err

DASHBOARD_HTML = Path(__file__).parent / "assets" / "dashboard.html"

router = APIRouter()


def get_coordinator(request: Request) -> FetchCoordinator:
    return request.app.state.coordinator


@router.get("/", response_class=HTMLResponse)
def dashboard():
    """Serve the dashboard page."""
    return HTMLResponse(DASHBOARD_HTML.read_text())


@router.get("/api/accounts")
def api_accounts(request: Request):
    """Configured accounts grouped by server (no passwords)."""
    return get_coordinator(request).list_accounts()


@router.get("/api/stats")
def api_stats(request: Request):
    """Saved-message counts and sizes per account/mailbox, plus totals."""
    return get_coordinator(request).stats().to_dict()


@router.post("/api/fetch")
def api_fetch(request: Request):
    """Start a fetch over all accounts unless one is already running."""
    return get_coordinator(request).trigger().to_dict()


@router.get("/api/fetch/status")
def api_fetch_status(request: Request):
    return get_coordinator(request).status().to_dict()


@router.get("/api/runs")
def api_runs(request: Request, limit: int = 20):
    """Recent per-mailbox run records, most recent first."""
    runs = get_coordinator(request).ledger.recent_runs(limit=limit)
    return {
        "runs": [
            {
                "id": r.id,
                "email": r.account_email,
                "mailbox": r.mailbox,
                "started_at": r.started_at.isoformat() if r.started_at else None,
                "completed_at": r.completed_at.isoformat() if r.completed_at else None,
                "messages_fetched": r.messages_fetched,
                "status": r.status,
            }
            for r in runs
        ]
    }


@router.get("/api/stream")
async def api_stream(request: Request):
    """Server-Sent Events stream of fetch status changes."""
    from sse_starlette.sse import EventSourceResponse

    coordinator = get_coordinator(request)

    async def event_generator():
        last = None
        while True:
            if await request.is_disconnected():
                break
            # status() touches sqlite; keep it off the event loop
            status = await asyncio.to_thread(lambda: coordinator.status().to_dict())
            if status != last:
                last = status
                yield {"event": "status", "data": json.dumps(status)}
            await asyncio.sleep(1)

    return EventSourceResponse(event_generator())


def create_app(coordinator: FetchCoordinator, scheduler: FetchScheduler | None = None) -> FastAPI:
    """Build the app; the scheduler (if any) starts and stops with it."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler:
                scheduler.shutdown()
            coordinator.shutdown(wait=False)

    app = FastAPI(title="Courrier", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.include_router(router)

    @app.exception_handler(sqlite3.Error)
    async def ledger_error(request: Request, exc: sqlite3.Error):
        err(f"Ledger error serving {request.url.path}: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=500)

    @app.exception_handler(CourrierError)
    async def courrier_error(request: Request, exc: CourrierError):
        err(f"Error serving {request.url.path}: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=500)

    return app


def main(app: FastAPI, host: str = "0.0.0.0", port: int = 3000):
    """Run the web server."""
    err(f"Courrier dashboard running on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")
