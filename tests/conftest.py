"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from src.monitor.models import ProbeResult
from src.monitor.registry import ServiceRegistry
from src.monitor.scheduler import MonitorScheduler
from src.monitor.store import StateStore

from tests.helpers import FakeProbe


@pytest.fixture
def registry() -> ServiceRegistry:
    return ServiceRegistry()


@pytest.fixture
def make_scheduler() -> Callable[..., MonitorScheduler]:
    """Factory for schedulers with small budgets and a fake probe by default."""

    def _make(reg: ServiceRegistry, probe: Callable[..., ProbeResult] | None = None, **kwargs: Any) -> MonitorScheduler:
        kwargs.setdefault("probe_timeout", 1.0)
        kwargs.setdefault("max_concurrency", 4)
        return MonitorScheduler(reg, probe_fn=probe or FakeProbe(), **kwargs)

    return _make


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "labwatch.yaml"


@pytest.fixture
def store(state_file: Path) -> StateStore:
    return StateStore(state_file, default_interval=10)
