"""
FastAPI application exposing the triage status view.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, BackgroundTasks, Request
from fastapi.middleware.cors import CORSMiddleware

from inbox_triage import __version__
from inbox_triage.app import TriageApp
from inbox_triage.config import Settings
from inbox_triage.core.logging import configure_logging, get_logger

log = get_logger(__name__)


def create_app(triage: TriageApp | None = None, start_polling: bool | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        triage: Pre-built TriageApp (built from the environment if None)
        start_polling: Override settings.scheduler_enabled
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        runner = triage
        if runner is None:
            settings = Settings()
            configure_logging(settings.log_level, json_output=settings.log_json)
            runner = TriageApp.create(settings)

        log.info("application_starting")
        runner.start(start_polling=start_polling)
        app.state.triage = runner

        yield

        runner.stop()
        log.info("application_stopped")

    app = FastAPI(
        title="Inbox Triage",
        description="Bounded LLM email triage with outcome ledger and health view",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health(request: Request):
        """Liveness plus per-dependency health verdicts."""
        runner: TriageApp = request.app.state.triage
        return {
            "status": "ok",
            "version": __version__,
            "dependencies": {
                name: info["status"]
                for name, info in runner.ctx.stats.health_report().items()
            },
        }

    @app.get("/status")
    async def status(request: Request):
        """Queue, throughput, health and recent activity."""
        runner: TriageApp = request.app.state.triage
        return runner.get_status()

    @app.post("/poll")
    async def trigger_poll(request: Request, background_tasks: BackgroundTasks):
        """
        Trigger a poll cycle.

        Runs in background to avoid timeout. A request made while a cycle is
        running does nothing.
        """
        runner: TriageApp = request.app.state.triage
        if runner.orchestrator.in_progress:
            return {"status": "already_running"}

        background_tasks.add_task(runner.poll_now)
        return {"status": "poll_started"}

    return app


# Run with: uvicorn inbox_triage.main:app --host 0.0.0.0 --port 8001
app = create_app()
