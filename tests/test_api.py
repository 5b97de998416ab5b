"""Tests for the FastAPI routes."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from src.api.server import create_app
from src.monitor.models import Status
from src.monitor.scheduler import SchedulerState


@pytest.fixture
def client(state_file: Path) -> TestClient:
    """Client without lifespan: the scheduler is wired but not running."""
    app = create_app(state_file=state_file)
    return TestClient(app)


def _add(client: TestClient, **overrides) -> dict:
    body = {"name": "Router", "address": "192.168.1.1", "port": 80, "protocol": "http"}
    body.update(overrides)
    resp = client.post("/api/services", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestServiceEndpoints:
    def test_list_empty(self, client: TestClient) -> None:
        resp = client.get("/api/services")
        assert resp.status_code == 200
        assert resp.json() == {"services": [], "count": 0}

    def test_add(self, client: TestClient, state_file: Path) -> None:
        data = _add(client)
        assert data["id"]
        assert data["overall"] == "degraded"
        assert data["services"][0]["last_status"] == "unknown"
        saved = yaml.safe_load(state_file.read_text(encoding="utf-8"))
        assert saved["services"][0]["id"] == data["id"]

    def test_add_invalid_port(self, client: TestClient) -> None:
        resp = client.post("/api/services", json={"name": "X", "address": "10.0.0.1", "port": 0})
        assert resp.status_code == 400
        assert "Port" in resp.json()["detail"]

    def test_add_invalid_address(self, client: TestClient) -> None:
        resp = client.post("/api/services", json={"name": "X", "address": "http://x y", "port": 80})
        assert resp.status_code == 400

    def test_add_unknown_protocol(self, client: TestClient) -> None:
        resp = client.post("/api/services", json={"name": "X", "address": "10.0.0.1", "port": 80, "protocol": "icmp"})
        assert resp.status_code == 422

    def test_update(self, client: TestClient) -> None:
        service_id = _add(client)["id"]
        resp = client.patch(f"/api/services/{service_id}", json={"name": "Gateway"})
        assert resp.status_code == 200
        assert resp.json()["services"][0]["name"] == "Gateway"

    def test_update_resets_status(self, client: TestClient) -> None:
        service_id = _add(client)["id"]
        client.app.state.registry.write_result(service_id, Status.UP, None, "2025-01-01T00:00:00+00:00")
        resp = client.patch(f"/api/services/{service_id}", json={"address": "192.168.1.254"})
        assert resp.json()["services"][0]["last_status"] == "unknown"

    def test_update_empty_body(self, client: TestClient) -> None:
        service_id = _add(client)["id"]
        assert client.patch(f"/api/services/{service_id}", json={}).status_code == 400

    def test_update_missing(self, client: TestClient) -> None:
        assert client.patch("/api/services/ghost", json={"name": "x"}).status_code == 404

    def test_remove(self, client: TestClient) -> None:
        service_id = _add(client)["id"]
        resp = client.delete(f"/api/services/{service_id}")
        assert resp.status_code == 200
        assert resp.json()["services"] == []
        assert client.delete(f"/api/services/{service_id}").status_code == 404


class TestConfigEndpoints:
    def test_interval(self, client: TestClient) -> None:
        assert client.get("/api/config/interval").json() == {"interval_seconds": 10}
        assert client.put("/api/config/interval", json={"interval_seconds": 5}).status_code == 400
        assert client.put("/api/config/interval", json={"interval_seconds": 3601}).status_code == 400
        resp = client.put("/api/config/interval", json={"interval_seconds": 300})
        assert resp.status_code == 200
        assert client.get("/api/config/interval").json() == {"interval_seconds": 300}

    def test_icon_set(self, client: TestClient) -> None:
        assert client.get("/api/config/icon-set").json() == {"icon_set": "default"}
        resp = client.put("/api/config/icon-set", json={"icon_set": "alt"})
        assert resp.status_code == 200
        assert resp.json()["icon_set"] == "alt"
        assert client.put("/api/config/icon-set", json={"icon_set": "neon"}).status_code == 400


class TestStatusEndpoints:
    def test_status_empty_is_healthy(self, client: TestClient) -> None:
        data = client.get("/api/status").json()
        assert data["overall"] == "healthy"
        assert data["menu"] == []
        assert data["scheduler"] == SchedulerState.IDLE.value

    def test_status_menu_lines(self, client: TestClient) -> None:
        _add(client, name="Router")
        data = client.get("/api/status").json()
        assert data["menu"] == ["… Router"]

    def test_trigger_check(self, client: TestClient) -> None:
        resp = client.post("/api/check")
        assert resp.status_code == 202
        assert resp.json()["status"] == "scheduled"

    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}


class TestLifespan:
    def test_scheduler_runs_with_app(self, state_file: Path) -> None:
        app = create_app(state_file=state_file)
        with TestClient(app) as client:
            assert app.state.scheduler.is_running
            assert client.get("/api/status").status_code == 200
        assert app.state.scheduler.state == SchedulerState.STOPPED

    def test_loads_persisted_services(self, state_file: Path) -> None:
        state_file.write_text(yaml.dump({
            "interval_seconds": 120,
            "icon_set": "alt",
            "services": [{"id": "abc123", "name": "Printer", "address": "192.168.1.50", "port": 631}],
        }), encoding="utf-8")
        client = TestClient(create_app(state_file=state_file))
        services = client.get("/api/services").json()["services"]
        assert [s["id"] for s in services] == ["abc123"]
        assert client.get("/api/config/interval").json() == {"interval_seconds": 120}
