"""Error taxonomy for the monitor core.

Probe failures are never raised: they resolve into a Down status with a
reason string. Only bad command input surfaces to callers.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for monitor errors."""


class ValidationError(MonitorError):
    """Raised when command input is malformed or out of range."""


class NotFoundError(MonitorError):
    """Raised when a command references a service id that does not exist."""

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"Service not found: {service_id}")


class PersistenceError(MonitorError):
    """Raised by the state store when loading or saving fails."""
