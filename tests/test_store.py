"""Tests for YAML state persistence."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.monitor.errors import PersistenceError
from src.monitor.models import Config, IconSet, Protocol, Service, Status
from src.monitor.store import StateStore


class TestLoad:
    def test_missing_file_is_empty_default(self, store: StateStore) -> None:
        services, config = store.load()
        assert services == []
        assert config == Config(interval_seconds=10, icon_set=IconSet.DEFAULT)

    def test_corrupt_yaml_is_empty_default(self, store: StateStore, state_file: Path) -> None:
        state_file.write_text("services: [unclosed\n  - {", encoding="utf-8")
        services, config = store.load()
        assert services == []
        assert config.interval_seconds == 10

    def test_wrong_shape_is_empty_default(self, store: StateStore, state_file: Path) -> None:
        state_file.write_text("- just\n- a list\n", encoding="utf-8")
        assert store.load() == ([], store.default_config())

    def test_empty_file(self, store: StateStore, state_file: Path) -> None:
        state_file.write_text("", encoding="utf-8")
        assert store.load() == ([], store.default_config())

    def test_malformed_entries_skipped(self, store: StateStore, state_file: Path) -> None:
        state_file.write_text(yaml.dump({
            "interval_seconds": 30,
            "icon_set": "alt",
            "services": [
                {"id": "a1", "name": "Router", "address": "192.168.1.1", "port": 80, "protocol": "http"},
                {"id": "a2", "name": "Bad port", "address": "192.168.1.2", "port": 0},
                {"name": "No id", "address": "192.168.1.3", "port": 22},
                "garbage",
                {"id": "a1", "name": "Duplicate", "address": "192.168.1.4", "port": 22},
                {"id": "a3", "name": "Legacy string port", "address": "192.168.1.5", "port": "8080"},
            ],
        }), encoding="utf-8")

        services, config = store.load()
        assert [s.id for s in services] == ["a1", "a3"]
        assert services[0].protocol == Protocol.HTTP
        assert services[1].protocol == Protocol.TCP
        assert services[1].port == 8080
        assert all(s.last_status == Status.UNKNOWN for s in services)
        assert config == Config(interval_seconds=30, icon_set=IconSet.ALTERNATE)

    def test_out_of_range_interval_falls_back(self, store: StateStore, state_file: Path) -> None:
        state_file.write_text(yaml.dump({"interval_seconds": 2, "icon_set": "sparkly"}), encoding="utf-8")
        _, config = store.load()
        assert config == store.default_config()

    @pytest.mark.parametrize("text", ["services: 5\n", "services: true\n", "services: 3.5\n", "services: {a: 1}\n"])
    def test_non_list_services_is_empty(self, store: StateStore, state_file: Path, text: str) -> None:
        state_file.write_text(text, encoding="utf-8")
        assert store.load() == ([], store.default_config())

    def test_non_list_services_keeps_config(self, store: StateStore, state_file: Path) -> None:
        state_file.write_text("interval_seconds: 30\nicon_set: alt\nservices: 3.5\n", encoding="utf-8")
        services, config = store.load()
        assert services == []
        assert config == Config(interval_seconds=30, icon_set=IconSet.ALTERNATE)


class TestSave:
    def test_round_trip_keeps_ids_and_config(self, store: StateStore) -> None:
        services = [
            Service(id="x1", name="DNS", address="8.8.8.8", port=53),
            Service(
                id="x2", name="Web", address="10.0.0.8", port=443, protocol=Protocol.HTTP,
                last_status=Status.UP, last_checked_at="2025-01-01T00:00:00+00:00",
            ),
        ]
        store.save(services, Config(interval_seconds=60, icon_set=IconSet.ALTERNATE))

        loaded, config = store.load()
        assert [s.id for s in loaded] == ["x1", "x2"]
        assert loaded[1].protocol == Protocol.HTTP
        assert loaded[1].last_status == Status.UNKNOWN  # status is runtime-only
        assert config == Config(interval_seconds=60, icon_set=IconSet.ALTERNATE)

    def test_status_not_written(self, store: StateStore, state_file: Path) -> None:
        store.save([Service(id="x1", name="DNS", address="8.8.8.8", port=53, last_status=Status.DOWN)], Config())
        raw = yaml.safe_load(state_file.read_text(encoding="utf-8"))
        assert set(raw["services"][0]) == {"id", "name", "address", "port", "protocol"}

    def test_creates_parent_dir(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "nested" / "dir" / "state.yaml")
        store.save([], Config())
        assert store.path.exists()

    def test_unwritable_path_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        store = StateStore(blocker / "state.yaml")
        with pytest.raises(PersistenceError):
            store.save([], Config())

    def test_older_version_skipped(self, store: StateStore) -> None:
        newer = [Service(id="n1", name="NAS", address="10.0.0.3", port=445)]
        assert store.save(newer, Config(), version=5)
        assert not store.save([], Config(), version=3)
        assert [s.id for s in store.load()[0]] == ["n1"]

    def test_same_or_newer_version_written(self, store: StateStore) -> None:
        store.save([], Config(), version=2)
        assert store.save([Service(id="a", name="A", address="10.0.0.1", port=22)], Config(), version=2)
        assert store.save([], Config(interval_seconds=60), version=3)
        services, config = store.load()
        assert services == []
        assert config.interval_seconds == 60

    def test_unversioned_save_always_written(self, store: StateStore) -> None:
        store.save([], Config(), version=9)
        assert store.save([Service(id="a", name="A", address="10.0.0.1", port=22)], Config())
        assert [s.id for s in store.load()[0]] == ["a"]
