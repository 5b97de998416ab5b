"""Probe doubles and async helpers shared by the test modules."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

from src.monitor.models import ProbeResult, Status
from src.monitor.scheduler import MonitorScheduler


class FakeProbe:
    """Probe stand-in: returns a fixed status per address and records calls."""

    def __init__(self, statuses: dict[str, Status] | None = None, default: Status = Status.UP) -> None:
        self.statuses = statuses or {}
        self.default = default
        self.calls: list[tuple[str, int, Any, float]] = []

    def __call__(self, address: str, port: int, protocol: Any, timeout: float, **kwargs: Any) -> ProbeResult:
        self.calls.append((address, port, protocol, timeout))
        status = self.statuses.get(address, self.default)
        message = "ok" if status == Status.UP else f"{address}:{port} unreachable"
        return ProbeResult(status=status, latency_ms=1.0, message=message)


class GatedProbe:
    """Probe that blocks until the test opens the gate."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.started = threading.Event()

    def __call__(self, address: str, port: int, protocol: Any, timeout: float, **kwargs: Any) -> ProbeResult:
        self.started.set()
        self.gate.wait(5)
        return ProbeResult(status=Status.UP, latency_ms=1.0, message="ok")


async def wait_for_cycles(scheduler: MonitorScheduler, count: int, timeout: float = 3.0) -> None:
    """Poll until the scheduler has completed ``count`` cycles."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while scheduler.cycle_count < count:
        if loop.time() > deadline:
            raise AssertionError(
                f"expected {count} cycles, got {scheduler.cycle_count} after {timeout}s"
            )
        await asyncio.sleep(0.01)
