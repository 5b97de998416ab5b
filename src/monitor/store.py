"""State store — persists services and config to a YAML file.

Only the definitions are stored (id, name, address, port, protocol) plus the
interval and icon set. Probe status is runtime-only and starts Unknown.
Loading never fails: a missing or corrupt file yields the default empty state.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from src.config import settings

from .errors import PersistenceError, ValidationError
from .models import Config, IconSet, Protocol, Service
from .probe import validate_address
from .registry import coerce_port, validate_interval, validate_name, validate_protocol

logger = logging.getLogger(__name__)


class StateStore:
    """YAML-backed persistence for the registry."""

    def __init__(self, path: Path | str | None = None, default_interval: int | None = None) -> None:
        self._path = Path(path or settings.state_file)
        self._default_interval = default_interval or settings.default_interval_seconds
        self._write_lock = threading.Lock()
        self._saved_version = -1

    @property
    def path(self) -> Path:
        return self._path

    def default_config(self) -> Config:
        return Config(interval_seconds=self._default_interval, icon_set=IconSet.DEFAULT)

    def load(self) -> tuple[list[Service], Config]:
        """Read services + config; any problem falls back to the empty default."""
        if not self._path.exists():
            logger.info("No state file at %s — starting empty", self._path)
            return [], self.default_config()

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to read %s: %s — starting empty", self._path, e)
            return [], self.default_config()

        if raw is None:
            return [], self.default_config()
        if not isinstance(raw, dict):
            logger.error("Unexpected state format in %s — starting empty", self._path)
            return [], self.default_config()

        config = self._parse_config(raw)

        entries = raw.get("services") or []
        if not isinstance(entries, list):
            logger.warning("Ignoring non-list services value in %s: %r", self._path, entries)
            entries = []

        services: list[Service] = []
        seen: set[str] = set()
        for entry in entries:
            try:
                svc = _parse_service(entry)
            except (ValidationError, KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed service entry: %s", e)
                continue
            if svc.id in seen:
                logger.warning("Skipping duplicate service id %s", svc.id)
                continue
            seen.add(svc.id)
            services.append(svc)

        logger.info("Loaded %d services from %s", len(services), self._path)
        return services, config

    def _parse_config(self, raw: dict[str, Any]) -> Config:
        config = self.default_config()
        try:
            interval = validate_interval(raw.get("interval_seconds", config.interval_seconds))
        except ValidationError as e:
            logger.warning("Ignoring stored interval: %s", e)
            interval = config.interval_seconds
        try:
            icon_set = IconSet(raw.get("icon_set", config.icon_set.value))
        except ValueError:
            logger.warning("Ignoring stored icon set %r", raw.get("icon_set"))
            icon_set = config.icon_set
        return Config(interval_seconds=interval, icon_set=icon_set)

    def save(self, services: Iterable[Service], config: Config, version: int | None = None) -> bool:
        """Atomically write the state file. Raises PersistenceError.

        Writes are serialized. When ``version`` is given, a snapshot older than
        the last one written is skipped and False is returned, so a slow writer
        never overwrites newer state.
        """
        data = {
            "interval_seconds": config.interval_seconds,
            "icon_set": config.icon_set.value,
            "services": [
                {
                    "id": s.id,
                    "name": s.name,
                    "address": s.address,
                    "port": s.port,
                    "protocol": s.protocol.value,
                }
                for s in services
            ],
        }
        with self._write_lock:
            if version is not None and version < self._saved_version:
                logger.debug("Skipping save of stale state (v%d < v%d)", version, self._saved_version)
                return False
            self._write(data)
            if version is not None:
                self._saved_version = version
        logger.debug("State saved to %s (%d services)", self._path, len(data["services"]))
        return True

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".labwatch-", suffix=".yaml")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    yaml.dump(data, fh, allow_unicode=True, sort_keys=False, default_flow_style=False)
                os.replace(tmp, self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write {self._path}: {e}") from e


# ── Parsers ──────────────────────────────────────────────────────────────────


def _parse_service(raw: dict[str, Any]) -> Service:
    service_id = str(raw["id"]).strip()
    if not service_id:
        raise ValidationError("Service id must not be empty")
    return Service(
        id=service_id,
        name=validate_name(raw.get("name")),
        address=validate_address(str(raw.get("address", ""))),
        port=coerce_port(raw.get("port")),
        protocol=validate_protocol(raw.get("protocol", Protocol.TCP.value)),
    )
