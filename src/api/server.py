"""FastAPI server for the service monitor."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import ViewBroadcaster, monitor_router
from src.config import settings
from src.monitor.commands import CommandSurface
from src.monitor.registry import ServiceRegistry
from src.monitor.scheduler import MonitorScheduler
from src.monitor.store import StateStore

logger = logging.getLogger(__name__)


def wire(app: FastAPI, state_file: Path | str | None = None) -> None:
    """Build registry, scheduler and command surface and attach them to app.state."""
    store = StateStore(state_file or settings.state_file)
    services, config = store.load()
    registry = ServiceRegistry(services, config)
    scheduler = MonitorScheduler(registry, store)
    broadcaster = ViewBroadcaster()
    scheduler.subscribe(broadcaster.broadcast)

    app.state.store = store
    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.broadcaster = broadcaster
    app.state.commands = CommandSurface(registry, scheduler, store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load persisted state and run the scheduler for the app's lifetime."""
    if not hasattr(app.state, "commands"):
        wire(app)
    app.state.broadcaster.bind(asyncio.get_running_loop())

    scheduler: MonitorScheduler = app.state.scheduler
    try:
        await scheduler.start()
        logger.info(
            "Monitoring %d services (state file: %s)",
            len(app.state.registry.snapshot().services), app.state.store.path,
        )
    except Exception:
        logger.exception("Scheduler failed to start")

    yield

    # Shutdown
    await scheduler.stop()


def create_app(state_file: Path | str | None = None) -> FastAPI:
    app = FastAPI(
        title="labwatch - Service Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if state_file is not None:
        wire(app, state_file)

    app.include_router(monitor_router, prefix="/api")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
