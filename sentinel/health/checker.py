"""HTTP probing of service health and metrics endpoints."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from ..models import STATUS_DOWN, Service, Status
from .classifier import EmptyBody, ResourceUsage, classify, extract_metrics_resources, parse_health_body


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    status: Status
    latency_ms: float
    cpu_percent: float
    memory_mb: float
    response_code: int
    reason: str
    url: str
    error: str | None = None
    body: Any = None


def _endpoint_url(base: str, suffix: str) -> str:
    url = (base or "").strip().strip('"').strip("'").rstrip("/")
    if url.endswith(suffix):
        url = url[: -len(suffix)].rstrip("/")
    return f"{url}{suffix}"


def health_url(service_url: str) -> str:
    """``http://svc/health/`` and ``http://svc`` both probe ``http://svc/health``."""
    return _endpoint_url(service_url, "/health")


def metrics_url(service_metrics_url: str) -> str:
    return _endpoint_url(service_metrics_url, "/metrics")


def decode_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class HealthChecker:
    """Fetches a service's health endpoint and classifies the response."""

    def __init__(self, timeout_seconds: float = 5.0, metrics_timeout_seconds: float = 3.0):
        self.timeout_seconds = float(timeout_seconds)
        self.metrics_timeout_seconds = float(metrics_timeout_seconds)

    async def probe(self, client: httpx.AsyncClient, service: Service) -> ProbeResult:
        """Probe one service. Fetch failures are reported as ``down``, never raised."""
        url = health_url(service.url)
        started = time.perf_counter()
        try:
            resp = await client.get(url, timeout=self.timeout_seconds, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 1)
            logger.warning("Health fetch failed",
                           service=service.name,
                           url=url,
                           error=f"{type(e).__name__}: {e}")
            return ProbeResult(
                status=STATUS_DOWN,
                latency_ms=elapsed_ms,
                cpu_percent=0.0,
                memory_mb=0.0,
                response_code=0,
                reason="fetch_error",
                url=url,
                error=f"{type(e).__name__}: {e}",
            )

        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 1)
        raw_body = decode_body(resp)
        parsed = parse_health_body(raw_body)
        result = classify(resp.status_code, parsed, latency_ms=elapsed_ms)

        cpu, memory = result.cpu_percent, result.memory_mb
        if service.metrics_url and not isinstance(parsed, EmptyBody) and (not cpu or not memory):
            extra = await self._fetch_metrics(client, service)
            cpu = cpu or extra.cpu_percent
            memory = memory or extra.memory_mb

        return ProbeResult(
            status=result.status,
            latency_ms=result.latency_ms,
            cpu_percent=cpu,
            memory_mb=memory,
            response_code=resp.status_code,
            reason=result.reason,
            url=url,
            body=raw_body,
        )

    async def _fetch_metrics(self, client: httpx.AsyncClient, service: Service) -> ResourceUsage:
        # Best effort: metrics never influence the status.
        url = metrics_url(service.metrics_url or "")
        try:
            resp = await client.get(url, timeout=self.metrics_timeout_seconds, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Metrics fetch failed", service=service.name, url=url, error=str(e))
            return ResourceUsage()
        if resp.status_code != 200:
            return ResourceUsage()
        try:
            return extract_metrics_resources(decode_body(resp))
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug("Metrics body unreadable", service=service.name, url=url, error=str(e))
            return ResourceUsage()
