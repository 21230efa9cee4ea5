"""Store interfaces consumed by the health engine.

Backends raise ``StorageError`` (or ``StorageUnavailableError`` when the backend
cannot be reached) and nothing else.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from ..models import AlertLog, HealthSample, Incident, Project, ReliabilityScore, Service

if TYPE_CHECKING:
    from ..notifications.rules import AlertRule


class ServiceRegistry(Protocol):
    async def list_active(self) -> list[Service]: ...

    async def list_all(self) -> list[Service]: ...

    async def get_by_id(self, service_id: str) -> Service | None: ...

    async def get_project(self, project_id: str) -> Project | None: ...


class SampleStore(Protocol):
    async def append(self, sample: HealthSample) -> None: ...

    async def latest_for(self, service_id: str) -> HealthSample | None: ...

    async def range_for(self, service_id: str, since: datetime) -> list[HealthSample]: ...

    async def count_for(self, service_id: str) -> int: ...


class IncidentStore(Protocol):
    async def find_open(self, service_id: str, incident_type: str) -> Incident | None: ...

    async def create(self, incident: Incident) -> Incident: ...

    async def resolve(self, incident_id: str, ended_at: datetime) -> None: ...

    async def list_for(self, service_id: str) -> list[Incident]: ...


class AlertRuleStore(Protocol):
    async def find_enabled_for(self, service_id: str) -> AlertRule | None: ...


class AlertLogStore(Protocol):
    async def append_log(self, log: AlertLog) -> None: ...

    async def logs_for(self, service_id: str) -> list[AlertLog]: ...


class ReliabilityScoreStore(Protocol):
    async def upsert(self, score: ReliabilityScore) -> ReliabilityScore: ...

    async def get_score(self, service_id: str) -> ReliabilityScore | None: ...


class Store(
    ServiceRegistry,
    SampleStore,
    IncidentStore,
    AlertRuleStore,
    AlertLogStore,
    ReliabilityScoreStore,
    Protocol,
):
    """A single backend implementing every store; what the coordinator wires up."""

    async def save_project(self, project: Project) -> None: ...

    async def save_service(self, service: Service) -> None: ...

    async def save_alert_rule(self, rule: AlertRule) -> None: ...
