"""One health-poll tick: probe every active service, persist, detect, alert."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
import structlog

from ..errors import StorageError
from ..health.checker import HealthChecker
from ..incidents.detector import IncidentDetector
from ..live import HealthUpdatePublisher
from ..models import CheckResult, HealthSample, HealthUpdate, Service
from ..notifications.dispatcher import AlertDispatcher
from ..storage.base import SampleStore, ServiceRegistry


logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PollResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: list[CheckResult] = field(default_factory=list)
    failed_services: list[str] = field(default_factory=list)
    alerted: list[str] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "checked": len(self.results),
            "failed_services": list(self.failed_services),
            "alerted": list(self.alerted),
            "skipped": self.skipped,
            "error": self.error,
            "results": [r.to_dict() for r in self.results],
        }


class HealthPoller:
    """Runs the health-check tick.

    Services are checked concurrently. For each one the previous sample is read
    before the new sample is written, and incident detection and the live update
    follow the write. Alerts are dispatched once per tick, after every service
    has finished, and only for services whose status just changed into
    ``degraded`` or ``down``.
    """

    def __init__(
        self,
        *,
        registry: ServiceRegistry,
        samples: SampleStore,
        checker: HealthChecker,
        detector: IncidentDetector,
        dispatcher: Optional[AlertDispatcher] = None,
        publisher: Optional[HealthUpdatePublisher] = None,
        client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.samples = samples
        self.checker = checker
        self.detector = detector
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.client_factory = client_factory
        self._clock = clock

    async def run_health_check(self) -> PollResult:
        poll = PollResult(started_at=self._clock())

        try:
            services = await self.registry.list_active()
        except StorageError as e:
            logger.error("Storage unavailable, skipping health check tick", error=str(e))
            poll.skipped = True
            poll.error = str(e)
            poll.finished_at = self._clock()
            return poll

        if services:
            async with self.client_factory() as client:
                outcomes = await asyncio.gather(
                    *(self.check_service(client, s) for s in services),
                    return_exceptions=True,
                )
            for service, outcome in zip(services, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("Health check failed", service=service.name, error=str(outcome))
                    poll.failed_services.append(service.id)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                poll.results.append(outcome)

        to_alert = [r for r in poll.results if r.needs_alert]
        if to_alert and self.dispatcher is not None:
            poll.alerted = [r.service_id for r in to_alert]
            try:
                await self.dispatcher.trigger_alerts(to_alert)
            except Exception as e:
                logger.error("Alert dispatch failed", error=str(e))

        poll.finished_at = self._clock()
        logger.info("Health check completed",
                    checked=len(poll.results),
                    failed=len(poll.failed_services),
                    alerted=len(poll.alerted))
        return poll

    async def check_service(self, client: httpx.AsyncClient, service: Service) -> CheckResult:
        """Probe, persist and run detection for one service.

        Store errors reading the previous sample or writing the new one
        propagate; detection and live-update errors are logged.
        """
        probe = await self.checker.probe(client, service)

        previous = await self.samples.latest_for(service.id)
        previous_status = previous.status if previous is not None else None
        status_changed = previous_status is not None and previous_status != probe.status

        sample = HealthSample(
            service_id=service.id,
            timestamp=self._clock(),
            status=probe.status,
            latency_ms=probe.latency_ms,
            cpu_percent=probe.cpu_percent,
            memory_mb=probe.memory_mb,
            response_code=probe.response_code,
        )
        await self.samples.append(sample)

        try:
            await self.detector.detect(service, sample)
        except Exception as e:
            logger.error("Incident detection failed", service=service.name, error=str(e))

        if self.publisher is not None:
            try:
                self.publisher.publish(HealthUpdate(
                    service_id=service.id,
                    service_name=service.name,
                    status=sample.status,
                    latency_ms=sample.latency_ms,
                    cpu_percent=sample.cpu_percent,
                    memory_mb=sample.memory_mb,
                    timestamp=sample.timestamp,
                ))
            except Exception as e:
                logger.warning("Live update publish failed", service=service.name, error=str(e))

        if status_changed:
            logger.info("Service status changed",
                        service=service.name,
                        previous_status=previous_status,
                        status=sample.status)

        return CheckResult(
            service_id=service.id,
            service_name=service.name,
            status=sample.status,
            latency_ms=sample.latency_ms,
            cpu_percent=sample.cpu_percent,
            memory_mb=sample.memory_mb,
            response_code=sample.response_code,
            timestamp=sample.timestamp,
            previous_status=previous_status,
            status_changed=status_changed,
            error=probe.error,
        )
