"""Overall status derivation — a pure function of service statuses."""

from __future__ import annotations

from collections.abc import Iterable

from .models import MonitorView, OverallStatus, RegistrySnapshot, Service, Status


def aggregate(services: Iterable[Service]) -> OverallStatus:
    """Healthy iff every service is Up (an empty list is Healthy)."""
    if all(s.last_status == Status.UP for s in services):
        return OverallStatus.HEALTHY
    return OverallStatus.DEGRADED


def build_view(snapshot: RegistrySnapshot) -> MonitorView:
    return MonitorView(snapshot=snapshot, overall=aggregate(snapshot.services))
