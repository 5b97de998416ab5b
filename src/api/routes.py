"""API routes for the service monitor.

Endpoints:
  GET    /api/services              — list services
  POST   /api/services              — add a service (checked immediately)
  PATCH  /api/services/{id}         — edit a service
  DELETE /api/services/{id}         — remove a service
  GET    /api/config/interval       — current check interval
  PUT    /api/config/interval       — change the check interval
  GET    /api/config/icon-set       — current tray icon set
  PUT    /api/config/icon-set       — change the tray icon set
  GET    /api/status                — services + overall status
  POST   /api/check                 — trigger an immediate check cycle
  GET    /api/stream                — SSE stream of status updates
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from src.monitor.commands import CommandSurface
from src.monitor.errors import NotFoundError, ValidationError
from src.monitor.models import MonitorView, Protocol

logger = logging.getLogger(__name__)

monitor_router = APIRouter()


# ── Request models ───────────────────────────────────────────────────────────


class AddServiceBody(BaseModel):
    name: str
    address: str
    port: int
    protocol: Protocol = Protocol.TCP


class UpdateServiceBody(BaseModel):
    name: str | None = None
    address: str | None = None
    port: int | None = None
    protocol: Protocol | None = None


class IntervalBody(BaseModel):
    interval_seconds: int


class IconSetBody(BaseModel):
    icon_set: str


# ── SSE broadcaster ──────────────────────────────────────────────────────────


class ViewBroadcaster:
    """Fans monitor views out to SSE subscriber queues.

    ``broadcast`` may be called from any thread (scheduler loop or a sync
    route running in the threadpool); queue writes hop onto the event loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, maxsize: int = 50) -> None:
        self._loop = loop
        self._maxsize = maxsize
        self._queues: list[asyncio.Queue[dict[str, Any]]] = []

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def open(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._maxsize)
        self._queues.append(queue)
        return queue

    def close(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def broadcast(self, view: MonitorView) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._push, view.to_dict())

    def _push(self, data: dict[str, Any]) -> None:
        for q in list(self._queues):
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                pass  # slow consumer — drop


# ── Helpers ──────────────────────────────────────────────────────────────────


def _commands(request: Request) -> CommandSurface:
    return request.app.state.commands  # type: ignore[no-any-return]


def _bad_request(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(e))


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


# ── Service endpoints ────────────────────────────────────────────────────────


@monitor_router.get("/services")
def list_services(request: Request) -> dict[str, Any]:
    services = _commands(request).list_services()
    return {"services": [s.to_dict() for s in services], "count": len(services)}


@monitor_router.post("/services", status_code=201)
def add_service(body: AddServiceBody, request: Request) -> dict[str, Any]:
    """Add a service; it is probed right away."""
    try:
        service_id, view = _commands(request).add_service(
            body.name, body.address, body.port, body.protocol,
        )
    except ValidationError as e:
        raise _bad_request(e) from e
    return {"id": service_id, **view.to_dict()}


@monitor_router.patch("/services/{service_id}")
def update_service(service_id: str, body: UpdateServiceBody, request: Request) -> dict[str, Any]:
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        view = _commands(request).update_service(service_id, **fields)
    except NotFoundError as e:
        raise _not_found(e) from e
    except ValidationError as e:
        raise _bad_request(e) from e
    return view.to_dict()


@monitor_router.delete("/services/{service_id}")
def remove_service(service_id: str, request: Request) -> dict[str, Any]:
    try:
        view = _commands(request).remove_service(service_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return view.to_dict()


# ── Config endpoints ─────────────────────────────────────────────────────────


@monitor_router.get("/config/interval")
def get_interval(request: Request) -> dict[str, Any]:
    return {"interval_seconds": _commands(request).get_interval()}


@monitor_router.put("/config/interval")
def set_interval(body: IntervalBody, request: Request) -> dict[str, Any]:
    try:
        view = _commands(request).set_interval(body.interval_seconds)
    except ValidationError as e:
        raise _bad_request(e) from e
    return {"interval_seconds": view.config.interval_seconds}


@monitor_router.get("/config/icon-set")
def get_icon_set(request: Request) -> dict[str, Any]:
    return {"icon_set": _commands(request).get_icon_set().value}


@monitor_router.put("/config/icon-set")
def set_icon_set(body: IconSetBody, request: Request) -> dict[str, Any]:
    try:
        view = _commands(request).set_icon_set(body.icon_set)
    except ValidationError as e:
        raise _bad_request(e) from e
    return {"icon_set": view.config.icon_set.value, "overall": view.overall.value}


# ── Status endpoints ─────────────────────────────────────────────────────────


@monitor_router.get("/status")
def current_status(request: Request) -> dict[str, Any]:
    view = _commands(request).current_view()
    return {
        **view.to_dict(),
        "scheduler": request.app.state.scheduler.state.value,
        "menu": view.status_lines(),
    }


@monitor_router.post("/check", status_code=202)
def trigger_check(request: Request) -> dict[str, Any]:
    """Ask the scheduler for an immediate cycle (coalesced if one is running)."""
    view = _commands(request).request_check()
    return {"status": "scheduled", "services": len(view.services)}


@monitor_router.get("/stream")
async def status_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream: one event per completed cycle or command."""
    broadcaster: ViewBroadcaster = request.app.state.broadcaster
    queue = broadcaster.open()

    async def event_generator():
        try:
            view = _commands(request).current_view()
            yield f"event: init\ndata: {json.dumps(view.to_dict())}\n\n"

            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: status\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            broadcaster.close(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
