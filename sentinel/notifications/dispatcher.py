"""Fan-out of status alerts to notification channels."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

import structlog

from ..errors import StorageError
from ..models import (
    BAD_STATUSES,
    CHANNEL_EMAIL,
    INCIDENT_DOWN,
    INCIDENT_LATENCY,
    AlertLog,
    CheckResult,
    Incident,
    Service,
)
from ..storage.base import AlertLogStore, AlertRuleStore, IncidentStore, ServiceRegistry
from .channels import (
    AlertMessage,
    ChannelDefaults,
    ChannelSender,
    ChannelTarget,
    EmailTarget,
    SendResult,
    resolve_recipients,
    resolve_targets,
)
from .messages import render_alert
from .throttle import AlertThrottle


logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertDispatcher:
    """Sends throttled alerts for services whose status just turned bad.

    ``trigger_alerts`` never raises: send failures, missing configuration and
    store errors are logged and, for send attempts, written to the alert log.
    """

    def __init__(
        self,
        *,
        registry: ServiceRegistry,
        rules: AlertRuleStore,
        incidents: IncidentStore,
        alert_logs: AlertLogStore,
        senders: Mapping[str, ChannelSender],
        throttle: Optional[AlertThrottle] = None,
        defaults: Optional[ChannelDefaults] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.rules = rules
        self.incidents = incidents
        self.alert_logs = alert_logs
        self.senders = dict(senders)
        self.throttle = throttle or AlertThrottle()
        self.defaults = defaults or ChannelDefaults()
        self._clock = clock

    async def trigger_alerts(self, batch: Iterable[CheckResult]) -> list[AlertLog]:
        """Dispatch alerts for every entry that changed into a bad status.

        Returns the alert-log records written during this call.
        """
        written: list[AlertLog] = []
        for result in batch:
            if result.status not in BAD_STATUSES:
                continue
            try:
                written.extend(await self._alert_one(result))
            except Exception as e:
                logger.error("Alert dispatch failed",
                             service_id=result.service_id,
                             status=result.status,
                             error=str(e))
        return written

    async def _alert_one(self, result: CheckResult) -> list[AlertLog]:
        service_id = result.service_id

        if not result.status_changed:
            logger.info("Alert skipped, status unchanged", service_id=service_id, status=result.status)
            return []

        if self.throttle.should_throttle(service_id, result.status, result.status_changed):
            logger.info("Alert throttled", service_id=service_id, status=result.status)
            return []

        service = await self.registry.get_by_id(service_id)
        if service is None:
            logger.warning("Service not found for alert", service_id=service_id)
            return []

        project_email = await self._project_email(service)

        rule = await self.rules.find_enabled_for(service_id)
        if rule is not None and not rule.allows(result.status):
            logger.info("Alert disabled by rule", service=service.name, status=result.status)
            return []

        incident = await self._open_incident(service_id)
        recipients = resolve_recipients(rule, service, project_email)
        if not recipients:
            logger.info("No email recipients configured", service=service.name)

        targets = resolve_targets(rule, self.defaults, service=service, recipients=recipients)
        targets = {channel: t for channel, t in targets.items() if channel in self.senders}
        if not targets:
            logger.warning("No alert channels configured", service=service.name)
            return []

        now = self._clock()
        message = render_alert(
            service,
            result.status,
            latency_ms=result.latency_ms,
            cpu_percent=result.cpu_percent,
            memory_mb=result.memory_mb,
            now=now,
            incident=incident,
        )

        logger.info("Sending alerts",
                    service=service.name,
                    status=result.status,
                    previous_status=result.previous_status,
                    channels=sorted(targets))

        channels = list(targets)
        outcomes = await asyncio.gather(
            *(self.senders[channel].send(targets[channel], message) for channel in channels),
            return_exceptions=True,
        )

        logs: list[AlertLog] = []
        for channel, outcome in zip(channels, outcomes):
            if isinstance(outcome, BaseException):
                outcome = SendResult.failed(f"{type(outcome).__name__}: {outcome}")
            elif not isinstance(outcome, SendResult):
                outcome = SendResult.failed(f"Unexpected sender result: {outcome!r}")
            log = self._log_entry(service, channel, targets[channel], message, outcome, now)
            logs.append(log)
            try:
                await self.alert_logs.append_log(log)
            except StorageError as e:
                logger.error("Alert log write failed", service=service.name, channel=channel, error=str(e))

        succeeded = sum(1 for log in logs if log.success)
        logger.info("Alerts sent", service=service.name, succeeded=succeeded, attempted=len(logs))

        # Recorded even when every send failed.
        self.throttle.record(service_id, result.status)
        return logs

    async def _project_email(self, service: Service) -> Optional[str]:
        if not service.project_id:
            return None
        try:
            project = await self.registry.get_project(service.project_id)
        except StorageError as e:
            logger.warning("Project lookup failed", service=service.name, error=str(e))
            return None
        if project is None:
            logger.warning("Project not found", service=service.name, project_id=service.project_id)
            return None
        return project.owner_email or None

    async def _open_incident(self, service_id: str) -> Optional[Incident]:
        for incident_type in (INCIDENT_DOWN, INCIDENT_LATENCY):
            try:
                incident = await self.incidents.find_open(service_id, incident_type)
            except StorageError as e:
                logger.warning("Incident lookup failed", service_id=service_id, error=str(e))
                return None
            if incident is not None:
                return incident
        return None

    def _log_entry(
        self,
        service: Service,
        channel: str,
        target: ChannelTarget,
        message: AlertMessage,
        outcome: SendResult,
        now: datetime,
    ) -> AlertLog:
        if outcome.success:
            if channel == CHANNEL_EMAIL and isinstance(target, EmailTarget):
                text = f"Email sent to: {', '.join(target.recipients)}"
            else:
                text = message.text
        else:
            logger.error("Alert send failed", service=service.name, channel=channel, error=outcome.error)
            text = f"Failed to send: {outcome.error}"
        return AlertLog(
            service_id=service.id,
            channel=channel,
            message=text,
            timestamp=now,
            success=outcome.success,
            error=None if outcome.success else outcome.error,
        )
