from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import httpx
import pytest

from sentinel.health.checker import HealthChecker, health_url, metrics_url
from sentinel.models import Service


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_GET(self) -> None:  # noqa: N802
        routes: dict[str, tuple[int, object]] = {
            "/healthy/health": (200, {"status": "UP", "system": {"memory_usage": {"heapUsed": 20 * 1048576}}}),
            "/healthy/metrics": (200, {"cpu": {"usage": 33.33}}),
            "/broken/health": (503, {"status": "ok"}),
            "/checks/health": (200, {"checks": [{"name": "db", "status": "ok"}, {"name": "queue", "status": "down"}]}),
            "/empty/health": (200, None),
            "/empty/metrics": (200, {"cpu": {"usage": 50}}),
            "/text/health": (200, "OK"),
            "/bad-metrics/health": (200, {"status": "ok"}),
            "/bad-metrics/metrics": (500, {"error": "boom"}),
            "/huge/health": (200, {"status": "ok", "system": {"cpu_load": [1e307, 1e307]}}),
            "/huge/metrics": (200, {"cpuUsage": 1e308, "mem": {"heapUsed": 4 * 1048576}}),
        }
        status, body = routes.get(self.path, (404, {"error": "not found"}))
        if body is None:
            payload = b""
            content_type = "text/plain"
        elif isinstance(body, str):
            payload = body.encode("utf-8")
            content_type = "text/plain; charset=utf-8"
        else:
            payload = json.dumps(body).encode("utf-8")
            content_type = "application/json"
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


@pytest.fixture(scope="module")
def local_server_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


def _service(url: str, metrics: str | None = None) -> Service:
    return Service(id="svc", name="svc", url=url, metrics_url=metrics)


def test_health_url_normalization() -> None:
    assert health_url("http://svc:8080") == "http://svc:8080/health"
    assert health_url("http://svc:8080/") == "http://svc:8080/health"
    assert health_url("http://svc:8080/health") == "http://svc:8080/health"
    assert health_url("http://svc:8080/health/") == "http://svc:8080/health"
    assert health_url("http://svc/api/") == "http://svc/api/health"
    assert metrics_url("http://svc/metrics/") == "http://svc/metrics"


@pytest.mark.asyncio
async def test_probe_ok_with_metrics_fallback(local_server_base_url: str) -> None:
    base = f"{local_server_base_url}/healthy"
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(base, metrics=base))
    assert result.status == "ok"
    assert result.response_code == 200
    assert result.memory_mb == 20.0
    # cpu was missing from the health body, so the metrics endpoint filled it in.
    assert result.cpu_percent == 33.3
    assert result.latency_ms >= 0
    assert result.url == f"{base}/health"


@pytest.mark.asyncio
async def test_probe_5xx_is_down(local_server_base_url: str) -> None:
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(f"{local_server_base_url}/broken/health"))
    assert result.status == "down"
    assert result.response_code == 503


@pytest.mark.asyncio
async def test_probe_checks_body(local_server_base_url: str) -> None:
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(f"{local_server_base_url}/checks"))
    assert result.status == "down"
    assert result.reason == "checks"


@pytest.mark.asyncio
async def test_empty_body_skips_metrics_fetch(local_server_base_url: str) -> None:
    base = f"{local_server_base_url}/empty"
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(base, metrics=base))
    assert result.status == "ok"
    assert result.reason == "no_body"
    assert result.cpu_percent == 0.0


@pytest.mark.asyncio
async def test_plain_text_body_is_classified_by_code(local_server_base_url: str) -> None:
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(f"{local_server_base_url}/text"))
    assert result.status == "ok"
    assert result.body == "OK"


@pytest.mark.asyncio
async def test_metrics_failure_does_not_change_status(local_server_base_url: str) -> None:
    base = f"{local_server_base_url}/bad-metrics"
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(base, metrics=base))
    assert result.status == "ok"
    assert result.cpu_percent == 0.0
    assert result.memory_mb == 0.0


@pytest.mark.asyncio
async def test_overflowing_numbers_still_produce_a_sample(local_server_base_url: str) -> None:
    base = f"{local_server_base_url}/huge"
    checker = HealthChecker(timeout_seconds=5.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(base, metrics=base))
    assert result.status == "ok"
    assert result.cpu_percent == 0.0
    assert result.memory_mb == 4.0


@pytest.mark.asyncio
async def test_unreachable_service_is_down_with_code_zero() -> None:
    # Bind then close a socket to get a port with nothing listening.
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    host, port = httpd.server_address
    httpd.server_close()

    checker = HealthChecker(timeout_seconds=2.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service(f"http://{host}:{port}"))
    assert result.status == "down"
    assert result.response_code == 0
    assert result.cpu_percent == 0.0
    assert result.memory_mb == 0.0
    assert result.reason == "fetch_error"
    assert result.error


@pytest.mark.asyncio
async def test_invalid_url_is_down() -> None:
    checker = HealthChecker(timeout_seconds=1.0)
    async with httpx.AsyncClient() as client:
        result = await checker.probe(client, _service("not a url"))
    assert result.status == "down"
    assert result.response_code == 0
