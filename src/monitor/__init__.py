"""Monitor core — registry, probes, scheduler, command surface."""

from .aggregator import aggregate, build_view
from .commands import CommandSurface
from .errors import MonitorError, NotFoundError, PersistenceError, ValidationError
from .models import (
    Config,
    IconSet,
    MonitorView,
    OverallStatus,
    ProbeResult,
    Protocol,
    RegistrySnapshot,
    Service,
    Status,
)
from .registry import ServiceRegistry
from .scheduler import MonitorScheduler, SchedulerState
from .store import StateStore
