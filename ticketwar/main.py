"""
Main application: status API server + orchestrator for one acquisition run.
"""

import asyncio
import os
import signal
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from ticketwar.browser import browser_manager
from ticketwar.config import CONFIG_FILE, SESSION_FILE, ConfigError, load_config, load_session
from ticketwar.events import event_broker, EventType
from ticketwar.flow import AcquisitionFlow
from ticketwar.models import FlowResult, FlowState, TERMINAL_STATES
from ticketwar.result_store import add_run, create_run_item, save_reference


# Configuration from environment
STATUS_HOST = os.getenv("STATUS_HOST", "127.0.0.1")
STATUS_PORT = int(os.getenv("STATUS_PORT", "8000"))
SERVE_STATUS = os.getenv("SERVE_STATUS", "true").lower() == "true"

# Session stays open after the run so the operator can pay
HOLD_SECONDS_HEADED = float(os.getenv("HOLD_SECONDS_HEADED", "300"))
HOLD_SECONDS_HEADLESS = float(os.getenv("HOLD_SECONDS_HEADLESS", "30"))

# Global instances
shutdown_event: asyncio.Event = asyncio.Event()
run_task: Optional[asyncio.Task] = None


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    timestamp: str


class StatusResponse(BaseModel):
    """Response model for status endpoint."""
    state: str
    current_url: str
    last_result: dict
    uptime_seconds: float
    running: bool


async def hold_session(seconds: float) -> None:
    """Keep the browser open for manual completion, until timeout or shutdown."""
    await event_broker.emit(
        EventType.INFO, "session_hold",
        f"Browser will stay open for {int(seconds)} seconds for manual payment completion...",
        hold_seconds=seconds
    )
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def record_result(result: FlowResult, target_url: str, started_at: str) -> None:
    """Write the reference artifact and the run history entry."""
    if result.reference:
        path = save_reference(result.reference, event_broker.current_url or target_url)
        await event_broker.emit(
            EventType.SUCCESS, "reference_saved", f"VA number saved to {path}",
            reference=result.reference, path=str(path)
        )
    add_run(create_run_item(target_url, result, started_at))


async def run_bot() -> Optional[FlowResult]:
    """
    Load config and session, run the flow once, hold the session open and
    shut the browser down. Returns None if the run never started.
    """
    started_at = datetime.now(timezone.utc).isoformat()
    try:
        config = load_config(CONFIG_FILE)
        session = load_session(SESSION_FILE)
    except ConfigError as e:
        await event_broker.emit(EventType.ERROR, "config_error", str(e))
        return None

    await event_broker.emit(
        EventType.STATE_CHANGE, "run_start", "Ticket acquisition run starting",
        target_url=config.target_url,
        categories=config.category_keywords,
        quantity=config.ticket_amount,
        headless=config.settings.headless
    )

    result = None
    try:
        try:
            page = await browser_manager.initialize(
                storage_state=session,
                headless=config.settings.headless,
                timeout_ms=config.settings.timeout
            )
            await browser_manager.start_tracing()
        except asyncio.CancelledError:
            # The flow never started, so it cannot report the abort itself
            result = FlowResult.aborted("Interrupted by operator", interrupted_in="browser_init")
            event_broker.current_state = FlowState.ABORTED
            event_broker.last_result = result.to_dict()
            await event_broker.emit(
                EventType.RESULT, "flow_complete", result.message,
                state=result.state.value, reference=None
            )
            await record_result(result, config.target_url, started_at)
            return result

        flow = AcquisitionFlow(
            config,
            popup_source=browser_manager.latest_popup,
            browser=browser_manager
        )
        result = await flow.execute(page)
        await record_result(result, config.target_url, started_at)

        hold = HOLD_SECONDS_HEADLESS if config.settings.headless else HOLD_SECONDS_HEADED
        await hold_session(hold)
    finally:
        await browser_manager.shutdown()

    return result


async def abort_run() -> bool:
    """Cancel the running flow. The flow turns the cancellation into ABORTED."""
    if run_task is None or run_task.done():
        return False
    if event_broker.current_state in TERMINAL_STATES:
        # Flow is done, only the hold window is left: end it
        shutdown_event.set()
        return True
    run_task.cancel()
    return True


async def startup():
    """Application startup."""
    global run_task

    await event_broker.emit(
        EventType.STEP, "application_startup", "Starting ticketwar",
        config_file=str(CONFIG_FILE),
        session_file=str(SESSION_FILE)
    )
    run_task = asyncio.create_task(run_bot())


async def shutdown():
    """Graceful shutdown."""
    await event_broker.emit(EventType.STEP, "application_shutdown", "Graceful shutdown initiated")

    shutdown_event.set()
    if run_task and not run_task.done():
        run_task.cancel()
        try:
            await run_task
        except asyncio.CancelledError:
            pass

    await browser_manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    await startup()
    yield
    await shutdown()


# Create FastAPI app
app = FastAPI(
    title="Ticketwar",
    description="Ticket acquisition run status and control",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="running" if browser_manager.is_running else "idle",
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get current run status."""
    status = event_broker.get_status()
    return StatusResponse(
        state=status["state"],
        current_url=status["current_url"],
        last_result=status["last_result"],
        uptime_seconds=status["uptime_seconds"],
        running=run_task is not None and not run_task.done()
    )


@app.get("/events")
async def events_stream():
    """SSE stream of structured JSON events."""
    async def event_generator():
        async for event in event_broker.subscribe():
            yield {
                "event": event.type.value,
                "data": event.to_json()
            }

    return EventSourceResponse(event_generator())


@app.get("/history")
async def get_event_history(limit: int = 50) -> List[Dict[str, Any]]:
    """Get recent event history."""
    events = await event_broker.get_history(limit)
    return [
        {
            "ts": e.ts,
            "type": e.type.value,
            "step": e.step,
            "url": e.url,
            "details": e.details
        }
        for e in events
    ]


@app.post("/actions/abort")
async def abort():
    """Abort the current run; the session is released."""
    if not await abort_run():
        raise HTTPException(status_code=409, detail="No run in progress")

    await event_broker.emit(EventType.STATE_CHANGE, "run_abort_requested", "Abort requested by operator")
    return {"status": "aborting"}


def handle_signal(signum, frame):
    """Handle shutdown signals."""
    print(f"Received signal {signum}, initiating shutdown...")
    shutdown_event.set()
    if run_task and not run_task.done():
        run_task.get_loop().call_soon_threadsafe(run_task.cancel)


async def run_headless_bot():
    """Run without the status server."""
    global run_task
    run_task = asyncio.create_task(run_bot())
    try:
        await run_task
    except asyncio.CancelledError:
        pass


async def run_servers():
    """Run the status API server; the run itself starts from the app lifespan."""
    config = uvicorn.Config(
        app,
        host=STATUS_HOST,
        port=STATUS_PORT,
        log_level="info",
        access_log=False
    )
    server = uvicorn.Server(config)
    await server.serve()


def main():
    if SERVE_STATUS:
        asyncio.run(run_servers())
    else:
        # Setup signal handlers
        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)
        asyncio.run(run_headless_bot())


if __name__ == "__main__":
    main()
