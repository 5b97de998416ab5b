"""Typed models shared by the registry, probes, scheduler and API.

Services and config are frozen dataclasses: the registry replaces entries
instead of mutating them, so a snapshot can hand out the same objects
without any reader observing a later change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

MIN_INTERVAL_SECONDS = 10
MAX_INTERVAL_SECONDS = 3600
MIN_PORT = 1
MAX_PORT = 65535


# ── Enums ────────────────────────────────────────────────────────────────────


class Protocol(str, Enum):
    TCP = "tcp"
    HTTP = "http"


class Status(str, Enum):
    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class IconSet(str, Enum):
    DEFAULT = "default"
    ALTERNATE = "alt"


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Service:
    """A monitored endpoint plus the status of its latest probe."""

    id: str
    name: str
    address: str
    port: int
    protocol: Protocol = Protocol.TCP
    last_status: Status = Status.UNKNOWN
    last_checked_at: str | None = None
    last_error: str | None = None
    latency_ms: float | None = None
    # Bumped whenever address/port/protocol change; results probed against an
    # older revision are discarded.
    revision: int = 0

    @property
    def target(self) -> str:
        return f"{self.address}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "port": self.port,
            "protocol": self.protocol.value,
            "last_status": self.last_status.value,
            "last_checked_at": self.last_checked_at,
            "last_error": self.last_error,
            "latency_ms": self.latency_ms,
        }


@dataclass(frozen=True)
class Config:
    """Global monitor settings editable at runtime."""

    interval_seconds: int = 10
    icon_set: IconSet = IconSet.DEFAULT

    def to_dict(self) -> dict[str, Any]:
        return {"interval_seconds": self.interval_seconds, "icon_set": self.icon_set.value}


@dataclass(frozen=True)
class RegistrySnapshot:
    """Point-in-time copy of the registry, safe to read without a lock.

    ``version`` grows with every registry mutation, so of two snapshots the
    one with the higher version is the more recent.
    """

    services: tuple[Service, ...] = ()
    config: Config = field(default_factory=Config)
    version: int = 0

    def get(self, service_id: str) -> Service | None:
        return next((s for s in self.services if s.id == service_id), None)

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self.services]


@dataclass
class ProbeResult:
    """Verdict of a single reachability check."""

    status: Status
    latency_ms: float
    message: str = ""
    status_code: int | None = None
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def is_up(self) -> bool:
        return self.status == Status.UP


_STATUS_MARKS = {
    Status.UP: "✅",
    Status.DOWN: "❌",
    Status.UNKNOWN: "…",
}


@dataclass(frozen=True)
class MonitorView:
    """What the presentation layer renders: services plus the overall verdict."""

    snapshot: RegistrySnapshot
    overall: OverallStatus

    @property
    def services(self) -> tuple[Service, ...]:
        return self.snapshot.services

    @property
    def config(self) -> Config:
        return self.snapshot.config

    @property
    def version(self) -> int:
        return self.snapshot.version

    def status_lines(self) -> list[str]:
        """One menu line per service, e.g. ``"✅ Google DNS"``."""
        return [f"{_STATUS_MARKS[s.last_status]} {s.name}" for s in self.services]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "config": self.config.to_dict(),
            "services": [s.to_dict() for s in self.services],
        }
