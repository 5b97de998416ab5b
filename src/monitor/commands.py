"""Command surface — the only way the UI mutates monitor state.

Every mutating command validates through the registry, persists the new
state (best-effort), publishes the resulting view to subscribers and wakes
the scheduler. Validation and lookup errors propagate to the caller with
state unchanged; persistence errors are logged only.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .aggregator import build_view
from .errors import PersistenceError
from .models import IconSet, MonitorView, Protocol, RegistrySnapshot, Service

if TYPE_CHECKING:
    from .registry import ServiceRegistry
    from .scheduler import MonitorScheduler
    from .store import StateStore

logger = logging.getLogger(__name__)


class CommandSurface:
    """Validating façade over the registry used by the API and CLI."""

    def __init__(
        self,
        registry: ServiceRegistry,
        scheduler: MonitorScheduler,
        store: StateStore | None = None,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.store = store

    # -- reads ----------------------------------------------------------------

    def list_services(self) -> list[Service]:
        return list(self.registry.snapshot().services)

    def get_interval(self) -> int:
        return self.registry.config.interval_seconds

    def get_icon_set(self) -> IconSet:
        return self.registry.config.icon_set

    def current_view(self) -> MonitorView:
        return build_view(self.registry.snapshot())

    # -- service commands -----------------------------------------------------

    def add_service(
        self,
        name: str,
        address: str,
        port: int,
        protocol: Protocol | str = Protocol.TCP,
    ) -> tuple[str, MonitorView]:
        service_id, snap = self.registry.add(name, address, port, protocol)
        view = self._after_mutation(snap)
        self.scheduler.request_recheck()
        return service_id, view

    def update_service(self, service_id: str, **fields: Any) -> MonitorView:
        snap = self.registry.update(service_id, **fields)
        view = self._after_mutation(snap)
        self.scheduler.request_recheck()
        return view

    def remove_service(self, service_id: str) -> MonitorView:
        snap = self.registry.remove(service_id)
        view = self._after_mutation(snap)
        self.scheduler.request_recheck()
        return view

    def request_check(self) -> MonitorView:
        """Trigger an immediate cycle without changing anything."""
        self.scheduler.request_recheck()
        return self.current_view()

    # -- config commands ------------------------------------------------------

    def set_interval(self, seconds: int) -> MonitorView:
        snap = self.registry.set_interval(seconds)
        view = self._after_mutation(snap)
        self.scheduler.request_reschedule()
        return view

    def set_icon_set(self, value: IconSet | str) -> MonitorView:
        snap = self.registry.set_icon_set(value)
        return self._after_mutation(snap)

    # -- helpers --------------------------------------------------------------

    def _after_mutation(self, snap: RegistrySnapshot) -> MonitorView:
        if self.store is not None:
            try:
                self.store.save(snap.services, snap.config, version=snap.version)
            except PersistenceError as e:
                logger.error("Failed to persist state: %s", e)
        view = build_view(snap)
        self.scheduler.publish(view)
        return view
