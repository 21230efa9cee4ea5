"""Core records shared by the poller, detector, SLO engine and alert dispatcher."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal


Status = Literal["ok", "degraded", "down"]

STATUS_OK: Status = "ok"
STATUS_DEGRADED: Status = "degraded"
STATUS_DOWN: Status = "down"
STATUSES: frozenset[str] = frozenset({STATUS_OK, STATUS_DEGRADED, STATUS_DOWN})
# Statuses that may trigger an alert on transition.
BAD_STATUSES: frozenset[str] = frozenset({STATUS_DEGRADED, STATUS_DOWN})

INCIDENT_DOWN = "down"
INCIDENT_LATENCY = "latency"
INCIDENT_ERROR_RATE = "error_rate"
INCIDENT_TYPES: tuple[str, ...] = (INCIDENT_DOWN, INCIDENT_LATENCY, INCIDENT_ERROR_RATE)

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"

SLO_PASS = "PASS"
SLO_FAIL = "FAIL"

CHANNEL_EMAIL = "email"
CHANNEL_SLACK = "slack"
CHANNEL_TELEGRAM = "telegram"
CHANNEL_WHATSAPP = "whatsapp"
CHANNELS: tuple[str, ...] = (CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_TELEGRAM, CHANNEL_WHATSAPP)


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    owner_email: str | None = None


@dataclass(frozen=True)
class Service:
    """A monitored microservice. Owned by the external CRUD layer; read-only here."""

    id: str
    name: str
    url: str
    project_id: str | None = None
    metrics_url: str | None = None
    group: str = "Default"
    owner_email: str | None = None
    active: bool = True
    # Per-service override of the default SLO target.
    slo_target: float | None = None


@dataclass(frozen=True)
class HealthSample:
    """One health observation of one service. Append-only."""

    service_id: str
    timestamp: datetime
    status: Status
    latency_ms: float = 0.0
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    response_code: int = 0

    def __post_init__(self) -> None:
        if self.status not in STATUSES:
            raise ValueError(f"Invalid health status: {self.status!r}")
        for name in ("latency_ms", "cpu_percent", "memory_mb"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @property
    def error_count(self) -> int:
        return 1 if self.status == STATUS_DOWN else 0


@dataclass
class Incident:
    """A bounded interval during which a service violated one health condition."""

    service_id: str
    type: str
    severity: str
    started_at: datetime
    details: str = ""
    ended_at: datetime | None = None
    resolved: bool = False
    id: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "type": self.type,
            "severity": self.severity,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "resolved": self.resolved,
            "details": self.details,
        }


@dataclass(frozen=True)
class ReliabilityScore:
    """Derived reliability snapshot for one service, recomputed from the sample window."""

    service_id: str
    uptime_percent: float
    p50_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    error_rate_percent: float
    slo_target_percent: float
    status: str
    last_calculated: datetime
    sample_count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "service_id": self.service_id,
            "uptime_percent": self.uptime_percent,
            "p50_latency_ms": self.p50_latency_ms,
            "p95_latency_ms": self.p95_latency_ms,
            "p99_latency_ms": self.p99_latency_ms,
            "error_rate_percent": self.error_rate_percent,
            "slo_target_percent": self.slo_target_percent,
            "status": self.status,
            "last_calculated": self.last_calculated.isoformat(),
            "sample_count": self.sample_count,
        }


@dataclass(frozen=True)
class AlertLog:
    """Audit record of a single channel send attempt."""

    service_id: str
    channel: str
    message: str
    timestamp: datetime
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class HealthUpdate:
    """Live event pushed to observers after each persisted sample."""

    service_id: str
    service_name: str
    status: Status
    latency_ms: float
    cpu_percent: float
    memory_mb: float
    timestamp: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "service_id": self.service_id,
            "service_name": self.service_name,
            "status": self.status,
            "latency_ms": self.latency_ms,
            "cpu_percent": self.cpu_percent,
            "memory_mb": self.memory_mb,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one service's health check within a poll tick."""

    service_id: str
    service_name: str
    status: Status
    latency_ms: float
    cpu_percent: float
    memory_mb: float
    response_code: int
    timestamp: datetime
    previous_status: Status | None = None
    status_changed: bool = False
    error: str | None = None

    @property
    def needs_alert(self) -> bool:
        return self.status_changed and self.status in BAD_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "service_id": self.service_id,
            "service_name": self.service_name,
            "status": self.status,
            "latency_ms": self.latency_ms,
            "cpu_percent": self.cpu_percent,
            "memory_mb": self.memory_mb,
            "response_code": self.response_code,
            "timestamp": self.timestamp.isoformat(),
            "previous_status": self.previous_status,
            "status_changed": self.status_changed,
            "error": self.error,
        }
