"""Service registry — the single owner of the service list and config.

All mutation goes through validated methods guarded by one lock. The lock
is only held for in-memory work (validate, copy, replace), never across a
probe or a disk write. Readers get an immutable RegistrySnapshot.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from .errors import NotFoundError, ValidationError
from .models import (
    MAX_INTERVAL_SECONDS,
    MIN_INTERVAL_SECONDS,
    Config,
    IconSet,
    Protocol,
    RegistrySnapshot,
    Service,
    Status,
)
from .probe import validate_address, validate_port

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "address", "port", "protocol")
_TARGET_FIELDS = ("address", "port", "protocol")


# ── Field validators ─────────────────────────────────────────────────────────


def validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name must not be empty")
    return name.strip()


def coerce_port(port: Any) -> int:
    if isinstance(port, str) and port.strip().isdigit():
        port = int(port.strip())
    return validate_port(port)


def validate_protocol(protocol: Any) -> Protocol:
    try:
        return Protocol(protocol.lower() if isinstance(protocol, str) else protocol)
    except ValueError:
        raise ValidationError(f"Unknown protocol: {protocol!r}") from None


def validate_interval(seconds: Any) -> int:
    if isinstance(seconds, bool) or not isinstance(seconds, int):
        raise ValidationError(f"Interval must be an integer, got {seconds!r}")
    if not MIN_INTERVAL_SECONDS <= seconds <= MAX_INTERVAL_SECONDS:
        raise ValidationError(
            f"Interval must be between {MIN_INTERVAL_SECONDS} and "
            f"{MAX_INTERVAL_SECONDS} seconds, got {seconds}"
        )
    return seconds


def validate_icon_set(value: Any) -> IconSet:
    try:
        return IconSet(value)
    except ValueError:
        choices = ", ".join(i.value for i in IconSet)
        raise ValidationError(f"Icon set must be one of: {choices}; got {value!r}") from None


# ── Registry ─────────────────────────────────────────────────────────────────


class ServiceRegistry:
    """Thread-safe owner of monitored services and global config."""

    def __init__(
        self,
        services: Iterable[Service] = (),
        config: Config | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._services: list[Service] = []
        self._issued_ids: set[str] = set()
        self._config = config or Config()
        self._version = 0
        for svc in services:
            if svc.id in self._issued_ids:
                logger.warning("Dropping duplicate service id %s (%s)", svc.id, svc.name)
                continue
            self._issued_ids.add(svc.id)
            self._services.append(svc)

    def _new_id(self) -> str:
        while True:
            service_id = uuid.uuid4().hex[:12]
            if service_id not in self._issued_ids:
                self._issued_ids.add(service_id)
                return service_id

    def _index_of(self, service_id: str) -> int:
        for i, svc in enumerate(self._services):
            if svc.id == service_id:
                return i
        raise NotFoundError(service_id)

    def _bump_locked(self) -> RegistrySnapshot:
        self._version += 1
        return self._snapshot_locked()

    def _snapshot_locked(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            services=tuple(self._services), config=self._config, version=self._version,
        )

    # -- reads ----------------------------------------------------------------

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return self._snapshot_locked()

    @property
    def config(self) -> Config:
        with self._lock:
            return self._config

    # -- service mutations ----------------------------------------------------

    def add(
        self,
        name: str,
        address: str,
        port: int,
        protocol: Protocol | str = Protocol.TCP,
    ) -> tuple[str, RegistrySnapshot]:
        """Register a new service with Unknown status and return its id."""
        svc_name = validate_name(name)
        svc_address = validate_address(address)
        svc_port = coerce_port(port)
        svc_protocol = validate_protocol(protocol)

        with self._lock:
            service = Service(
                id=self._new_id(),
                name=svc_name,
                address=svc_address,
                port=svc_port,
                protocol=svc_protocol,
            )
            self._services.append(service)
            snap = self._bump_locked()

        logger.info("Added service '%s' (%s %s)", service.name, service.protocol.value, service.target)
        return service.id, snap

    def update(self, service_id: str, **fields: Any) -> RegistrySnapshot:
        """Edit name/address/port/protocol; a changed target resets status to Unknown."""
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {}
        if "name" in fields:
            changes["name"] = validate_name(fields["name"])
        if "address" in fields:
            changes["address"] = validate_address(fields["address"])
        if "port" in fields:
            changes["port"] = coerce_port(fields["port"])
        if "protocol" in fields:
            changes["protocol"] = validate_protocol(fields["protocol"])

        with self._lock:
            idx = self._index_of(service_id)
            current = self._services[idx]
            target_changed = any(
                k in changes and changes[k] != getattr(current, k) for k in _TARGET_FIELDS
            )
            if target_changed:
                changes.update(
                    last_status=Status.UNKNOWN,
                    last_checked_at=None,
                    last_error=None,
                    latency_ms=None,
                    revision=current.revision + 1,
                )
            self._services[idx] = replace(current, **changes)
            snap = self._bump_locked()

        logger.info(
            "Updated service %s%s", service_id, " (target changed, status reset)" if target_changed else "",
        )
        return snap

    def remove(self, service_id: str) -> RegistrySnapshot:
        with self._lock:
            idx = self._index_of(service_id)
            removed = self._services.pop(idx)
            snap = self._bump_locked()
        logger.info("Removed service '%s' (%s)", removed.name, service_id)
        return snap

    def write_result(
        self,
        service_id: str,
        status: Status,
        error: str | None,
        timestamp: str,
        *,
        latency_ms: float | None = None,
        revision: int | None = None,
    ) -> bool:
        """Record a probe outcome. Returns True if the service's status changed.

        Silently ignored when the service is gone, its target changed since the
        probe was planned (revision mismatch), or a newer result is already stored.
        """
        with self._lock:
            try:
                idx = self._index_of(service_id)
            except NotFoundError:
                logger.debug("Discarding result for removed service %s", service_id)
                return False
            current = self._services[idx]
            if revision is not None and revision != current.revision:
                logger.debug("Discarding stale result for %s (target changed)", service_id)
                return False
            if current.last_checked_at and timestamp < current.last_checked_at:
                logger.debug("Discarding out-of-order result for %s", service_id)
                return False

            self._services[idx] = replace(
                current,
                last_status=status,
                last_checked_at=timestamp,
                last_error=error if status == Status.DOWN else None,
                latency_ms=latency_ms,
            )
            self._version += 1
            return current.last_status != status

    # -- config mutations -----------------------------------------------------

    def set_interval(self, seconds: int) -> RegistrySnapshot:
        interval = validate_interval(seconds)
        with self._lock:
            self._config = replace(self._config, interval_seconds=interval)
            snap = self._bump_locked()
        logger.info("Check interval set to %ds", interval)
        return snap

    def set_icon_set(self, value: IconSet | str) -> RegistrySnapshot:
        icon_set = validate_icon_set(value)
        with self._lock:
            self._config = replace(self._config, icon_set=icon_set)
            snap = self._bump_locked()
        logger.info("Icon set changed to %s", icon_set.value)
        return snap
