"""Incident detection for health samples."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog

from ..health.classifier import round1
from ..models import (
    INCIDENT_DOWN,
    INCIDENT_LATENCY,
    SEVERITY_CRITICAL,
    SEVERITY_WARNING,
    STATUS_DOWN,
    HealthSample,
    Incident,
    Service,
)
from ..storage.base import IncidentStore


logger = structlog.get_logger(__name__)

DEFAULT_LATENCY_THRESHOLD_MS = 1000


@dataclass
class DetectionOutcome:
    opened: list[Incident] = field(default_factory=list)
    resolved: list[Incident] = field(default_factory=list)


def _down_details(response_code: int) -> str:
    code = str(response_code) if response_code else "N/A"
    return f"Service unreachable. Response code: {code}"


def _ms(value: float) -> str:
    return f"{round1(value):.1f}".rstrip("0").rstrip(".")


def _latency_details(latency_ms: float, threshold_ms: float) -> str:
    return f"Latency exceeded threshold: {_ms(latency_ms)}ms > {_ms(threshold_ms)}ms"


class IncidentDetector:
    """Opens and resolves ``down`` and ``latency`` incidents for each new sample.

    The two incident types are independent state machines evaluated against the
    same sample. Each creates only after checking there is no open incident of
    its type, so at most one incident per (service, type) is ever open.
    Store errors propagate to the caller.
    """

    def __init__(self, store: IncidentStore, latency_threshold_ms: float = DEFAULT_LATENCY_THRESHOLD_MS):
        self.store = store
        self.latency_threshold_ms = float(latency_threshold_ms)

    async def detect(self, service: Service, sample: HealthSample) -> DetectionOutcome:
        outcome = DetectionOutcome()
        await self._check_down(service, sample, outcome)
        await self._check_latency(service, sample, outcome)
        return outcome

    async def _check_down(self, service: Service, sample: HealthSample, outcome: DetectionOutcome) -> None:
        existing = await self.store.find_open(service.id, INCIDENT_DOWN)
        if sample.status == STATUS_DOWN:
            if existing is None:
                await self._open(
                    service, sample, INCIDENT_DOWN, SEVERITY_CRITICAL, _down_details(sample.response_code), outcome
                )
        elif existing is not None:
            await self._resolve(service, sample, existing, outcome)

    async def _check_latency(self, service: Service, sample: HealthSample, outcome: DetectionOutcome) -> None:
        existing = await self.store.find_open(service.id, INCIDENT_LATENCY)
        if sample.latency_ms > self.latency_threshold_ms:
            # A down sample neither opens nor resolves a latency incident.
            if sample.status != STATUS_DOWN and existing is None:
                await self._open(
                    service,
                    sample,
                    INCIDENT_LATENCY,
                    SEVERITY_WARNING,
                    _latency_details(sample.latency_ms, self.latency_threshold_ms),
                    outcome,
                )
        elif existing is not None:
            await self._resolve(service, sample, existing, outcome)

    async def _open(
        self,
        service: Service,
        sample: HealthSample,
        incident_type: str,
        severity: str,
        details: str,
        outcome: DetectionOutcome,
    ) -> Optional[Incident]:
        incident = await self.store.create(
            Incident(
                service_id=service.id,
                type=incident_type,
                severity=severity,
                started_at=sample.timestamp,
                details=details,
            )
        )
        outcome.opened.append(incident)
        logger.warning("Incident opened",
                       service=service.name,
                       incident_type=incident_type,
                       severity=severity,
                       details=details)
        return incident

    async def _resolve(
        self, service: Service, sample: HealthSample, incident: Incident, outcome: DetectionOutcome
    ) -> None:
        await self.store.resolve(incident.id, sample.timestamp)
        incident.resolved = True
        incident.ended_at = sample.timestamp
        outcome.resolved.append(incident)
        logger.info("Incident resolved", service=service.name, incident_type=incident.type, incident_id=incident.id)
