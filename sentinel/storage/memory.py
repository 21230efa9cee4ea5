"""In-memory store, used by tests and for ephemeral single-process runs."""

from __future__ import annotations

import dataclasses
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from ..errors import StorageError
from ..models import AlertLog, HealthSample, Incident, Project, ReliabilityScore, Service

if TYPE_CHECKING:
    from ..notifications.rules import AlertRule


class InMemoryStore:
    """Implements every store protocol on plain dicts and lists."""

    def __init__(self) -> None:
        self.projects: dict[str, Project] = {}
        self.services: dict[str, Service] = {}
        self.samples: dict[str, list[HealthSample]] = {}
        self.incidents: dict[str, Incident] = {}
        self.alert_rules: dict[str, AlertRule] = {}
        self.alert_logs: list[AlertLog] = []
        self.scores: dict[str, ReliabilityScore] = {}

    # --- registry ---
    async def save_project(self, project: Project) -> None:
        self.projects[project.id] = project

    async def save_service(self, service: Service) -> None:
        self.services[service.id] = service

    async def list_active(self) -> list[Service]:
        return [s for s in self.services.values() if s.active]

    async def list_all(self) -> list[Service]:
        return list(self.services.values())

    async def get_by_id(self, service_id: str) -> Service | None:
        return self.services.get(service_id)

    async def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id)

    # --- samples ---
    async def append(self, sample: HealthSample) -> None:
        self.samples.setdefault(sample.service_id, []).append(sample)

    async def latest_for(self, service_id: str) -> HealthSample | None:
        items = self.samples.get(service_id) or []
        if not items:
            return None
        # Later insertion wins timestamp ties.
        _idx, latest = max(enumerate(items), key=lambda pair: (pair[1].timestamp, pair[0]))
        return latest

    async def range_for(self, service_id: str, since: datetime) -> list[HealthSample]:
        items = self.samples.get(service_id) or []
        window = [(s.timestamp, i, s) for i, s in enumerate(items) if s.timestamp >= since]
        window.sort(key=lambda t: (t[0], t[1]))
        return [s for _ts, _i, s in window]

    async def count_for(self, service_id: str) -> int:
        return len(self.samples.get(service_id) or [])

    # --- incidents ---
    async def find_open(self, service_id: str, incident_type: str) -> Incident | None:
        for incident in self.incidents.values():
            if incident.service_id == service_id and incident.type == incident_type and not incident.resolved:
                return dataclasses.replace(incident)
        return None

    async def create(self, incident: Incident) -> Incident:
        if await self.find_open(incident.service_id, incident.type) is not None:
            raise StorageError(f"Open {incident.type} incident already exists for {incident.service_id}")
        stored = dataclasses.replace(incident, id=incident.id or str(uuid.uuid4()))
        self.incidents[stored.id] = stored
        return dataclasses.replace(stored)

    async def resolve(self, incident_id: str, ended_at: datetime) -> None:
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise StorageError(f"Unknown incident {incident_id}")
        incident.resolved = True
        incident.ended_at = ended_at

    async def list_for(self, service_id: str) -> list[Incident]:
        items = [dataclasses.replace(i) for i in self.incidents.values() if i.service_id == service_id]
        items.sort(key=lambda i: i.started_at)
        return items

    # --- alert rules and logs ---
    async def save_alert_rule(self, rule: AlertRule) -> None:
        self.alert_rules[rule.service_id] = rule

    async def find_enabled_for(self, service_id: str) -> AlertRule | None:
        rule = self.alert_rules.get(service_id)
        if rule is None or not rule.enabled:
            return None
        return rule

    async def append_log(self, log: AlertLog) -> None:
        self.alert_logs.append(log)

    async def logs_for(self, service_id: str) -> list[AlertLog]:
        return [log for log in self.alert_logs if log.service_id == service_id]

    # --- reliability ---
    async def upsert(self, score: ReliabilityScore) -> ReliabilityScore:
        self.scores[score.service_id] = score
        return score

    async def get_score(self, service_id: str) -> ReliabilityScore | None:
        return self.scores.get(service_id)
