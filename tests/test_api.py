from __future__ import annotations

from datetime import datetime, timezone

import asyncio

import pytest
from fastapi.testclient import TestClient

import main
from sentinel.config import SentinelConfig
from sentinel.models import HealthSample, Service
from sentinel.scheduler.coordinator import MonitorCoordinator
from sentinel.scheduler.poller import PollResult
from sentinel.storage.memory import InMemoryStore


@pytest.fixture
def client() -> TestClient:
    return TestClient(main.app)


@pytest.fixture
def coordinator(monkeypatch: pytest.MonkeyPatch) -> MonitorCoordinator:
    store = InMemoryStore()
    store.services["api"] = Service(id="api", name="api", url="http://api.local")
    store.samples["api"] = [
        HealthSample(
            service_id="api",
            timestamp=datetime(2020, 6, 1, tzinfo=timezone.utc),
            status="degraded",
            latency_ms=250.0,
            response_code=404,
        )
    ]
    instance = MonitorCoordinator(
        SentinelConfig(database_path="", alerts_enabled=False, projects=[], services=[]),
        store=store,
        senders={},
    )
    monkeypatch.setattr(main, "coordinator", instance)
    return instance


def test_root_is_always_available(client: TestClient) -> None:
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/status"),
        ("post", "/run/health-check"),
        ("post", "/run/reliability"),
        ("get", "/debug/services"),
        ("get", "/reliability/api"),
    ],
)
def test_endpoints_return_503_before_startup(
    client: TestClient, monkeypatch: pytest.MonkeyPatch, method: str, path: str
) -> None:
    monkeypatch.setattr(main, "coordinator", None)
    resp = getattr(client, method)(path)
    assert resp.status_code == 503
    assert resp.json() == {"success": False, "error": "System not initialized"}


def test_debug_services_lists_latest_sample(client: TestClient, coordinator: MonitorCoordinator) -> None:
    resp = client.get("/debug/services")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    row = data["services"][0]
    assert row["health_url"] == "http://api.local/health"
    assert row["sample_count"] == 1
    assert row["latest"]["status"] == "degraded"


def test_reliability_run_and_lookup(client: TestClient, coordinator: MonitorCoordinator) -> None:
    assert client.get("/reliability/api").status_code == 404

    resp = client.post("/run/reliability")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    task_id = body["task_id"]

    # The fixture sample is older than the 7-day window.
    assert body["calculated"] == 0

    task = client.get(f"/tasks/{task_id}")
    assert task.status_code == 200
    assert task.json()["status"] == "completed"
    assert client.get("/tasks/unknown").status_code == 404


def test_status_reports_alerting_disabled(client: TestClient, coordinator: MonitorCoordinator) -> None:
    resp = client.get("/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["alerts_enabled"] is False
    assert data["scheduler"]["running"] is False
    assert data["running_tasks"] == 0


def test_test_health_for_unknown_service(client: TestClient, coordinator: MonitorCoordinator) -> None:
    resp = client.get("/debug/test-health/missing")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Service not found"


class _SlowPoller:
    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0

    async def run_health_check(self) -> PollResult:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.05)
        self.active -= 1
        return PollResult(started_at=datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_manual_and_scheduled_health_checks_do_not_overlap(coordinator: MonitorCoordinator) -> None:
    poller = _SlowPoller()
    coordinator.poller = poller

    first, second = await asyncio.gather(coordinator.run_health_check(), coordinator.run_health_check())

    assert poller.max_active == 1
    assert first["success"] is True and second["success"] is True
    assert first["task_id"] != second["task_id"]
    assert len(coordinator.task_history) == 2
