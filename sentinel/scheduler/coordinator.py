"""Wires the health engine together and tracks scheduled and manual runs."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx
import structlog

from ..config import SentinelConfig
from ..errors import StorageError
from ..health.checker import HealthChecker, health_url
from ..incidents.detector import IncidentDetector
from ..live import LiveUpdateHub
from ..models import CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_TELEGRAM, CHANNEL_WHATSAPP
from ..notifications.channels import ChannelSender
from ..notifications.dispatcher import AlertDispatcher
from ..notifications.senders import SlackSender, SmtpEmailSender, TelegramSender, WhatsAppSender
from ..notifications.throttle import AlertThrottle
from ..reliability.slo_engine import SLOEngine
from ..storage.base import Store
from ..storage.memory import InMemoryStore
from ..storage.sqlite import SQLiteStore
from .job_scheduler import JobScheduler
from .poller import HealthPoller


logger = structlog.get_logger(__name__)

HEALTH_CHECK_JOB = "health_check"
RELIABILITY_JOB = "reliability_scores"
INITIAL_CHECK_JOB = "initial_health_check"
TASK_HISTORY_LIMIT = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_store(config: SentinelConfig) -> Store:
    if config.database_path:
        return SQLiteStore(config.database_path)
    return InMemoryStore()


class MonitorCoordinator:
    """Owns the store, poller, SLO engine and scheduler for one process."""

    def __init__(
        self,
        config: SentinelConfig,
        *,
        store: Optional[Store] = None,
        senders: Optional[Mapping[str, ChannelSender]] = None,
        hub: Optional[LiveUpdateHub] = None,
    ):
        self.config = config
        self.store = store if store is not None else build_store(config)
        self.hub = hub or LiveUpdateHub()
        self.scheduler = JobScheduler()
        self.http_client = httpx.AsyncClient()

        if senders is None:
            senders = {
                CHANNEL_EMAIL: SmtpEmailSender(),
                CHANNEL_SLACK: SlackSender(self.http_client),
                CHANNEL_TELEGRAM: TelegramSender(self.http_client),
                CHANNEL_WHATSAPP: WhatsAppSender(self.http_client),
            }

        self.checker = HealthChecker(
            timeout_seconds=config.health_timeout_seconds,
            metrics_timeout_seconds=config.metrics_timeout_seconds,
        )
        self.detector = IncidentDetector(self.store, latency_threshold_ms=config.latency_threshold_ms)
        self.dispatcher: Optional[AlertDispatcher] = None
        if config.alerts_enabled:
            if not config.channels.email.is_configured():
                logger.info("SMTP credentials not set, e-mail alerts will be skipped")
            self.dispatcher = AlertDispatcher(
                registry=self.store,
                rules=self.store,
                incidents=self.store,
                alert_logs=self.store,
                senders=senders,
                throttle=AlertThrottle(window_minutes=config.alert_throttle_minutes),
                defaults=config.channels,
            )
        self.poller = HealthPoller(
            registry=self.store,
            samples=self.store,
            checker=self.checker,
            detector=self.detector,
            dispatcher=self.dispatcher,
            publisher=self.hub,
        )
        self.slo_engine = SLOEngine(
            samples=self.store,
            registry=self.store,
            scores=self.store,
            window_days=config.slo_window_days,
            default_slo_target=config.default_slo_target,
        )

        # Task execution tracking
        self.running_tasks: Dict[str, Dict[str, Any]] = {}
        self.task_history: List[Dict[str, Any]] = []
        # Scheduled and manual health checks never run side by side.
        self._health_check_lock = asyncio.Lock()

    async def start(self, schedule_jobs: bool = True):
        """Seed configured entities, then start the scheduler and register the default jobs."""
        await self.seed_from_config()
        if schedule_jobs:
            self._setup_default_jobs()
            await self.scheduler.start()
        logger.info("Monitor coordinator started", scheduled=schedule_jobs)

    async def stop(self):
        await self.scheduler.stop()
        await self.http_client.aclose()
        logger.info("Monitor coordinator stopped")

    async def seed_from_config(self) -> None:
        for project in self.config.projects:
            await self.store.save_project(project.to_project())
        for service in self.config.services:
            await self.store.save_service(service.to_service())
        for rule in self.config.alert_rules:
            await self.store.save_alert_rule(rule)
        if self.config.services:
            logger.info("Seeded configuration",
                        projects=len(self.config.projects),
                        services=len(self.config.services),
                        alert_rules=len(self.config.alert_rules))

    def _setup_default_jobs(self):
        self.scheduler.add_interval_job(
            job_id=HEALTH_CHECK_JOB,
            func=self.run_health_check,
            seconds=self.config.health_check_interval_seconds,
            description="Poll every active service's health endpoint",
        )
        self.scheduler.add_cron_job(
            job_id=RELIABILITY_JOB,
            func=self.run_reliability_calculation,
            cron_expression=self.config.reliability_schedule_cron,
            description="Recompute reliability scores",
        )
        self.scheduler.add_one_shot_job(
            job_id=INITIAL_CHECK_JOB,
            func=self.run_health_check,
            delay_seconds=self.config.initial_check_delay_seconds,
            description="Initial health check after startup",
        )

    def _begin_task(self, task_type: str) -> str:
        task_id = f"{task_type}_{_utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        self.running_tasks[task_id] = {
            "task_id": task_id,
            "type": task_type,
            "start_time": _utcnow(),
            "status": "running",
        }
        return task_id

    def _complete_task(self, task_id: str, result: Dict[str, Any]):
        """Mark a task as complete and add to history."""
        if task_id in self.running_tasks:
            task_info = self.running_tasks.pop(task_id)
            task_info["end_time"] = _utcnow()
            task_info["duration"] = (task_info["end_time"] - task_info["start_time"]).total_seconds()
            task_info["status"] = "completed" if result.get("success") else "failed"
            task_info.update(result)

            self.task_history.append(task_info)
            if len(self.task_history) > TASK_HISTORY_LIMIT:
                self.task_history = self.task_history[-TASK_HISTORY_LIMIT:]

    async def run_health_check(self) -> Dict[str, Any]:
        """Run one health-check tick; never raises."""
        async with self._health_check_lock:
            task_id = self._begin_task("health_check")
            try:
                poll = await self.poller.run_health_check()
                result = {"task_id": task_id, "success": not poll.skipped, **poll.to_dict()}
            except Exception as e:
                logger.error("Health check task failed", task_id=task_id, error=str(e))
                result = {"task_id": task_id, "success": False, "error": str(e)}
            self._complete_task(task_id, result)
            return result

    async def run_reliability_calculation(self) -> Dict[str, Any]:
        """Recompute every active service's reliability score; never raises."""
        task_id = self._begin_task("reliability")
        try:
            scores = await self.slo_engine.calculate_all()
            result = {
                "task_id": task_id,
                "success": True,
                "calculated": len(scores),
                "scores": [s.to_dict() for s in scores],
            }
            logger.info("Reliability scores calculated", task_id=task_id, calculated=len(scores))
        except Exception as e:
            logger.error("Reliability task failed", task_id=task_id, error=str(e))
            result = {"task_id": task_id, "success": False, "error": str(e)}
        self._complete_task(task_id, result)
        return result

    async def get_reliability(self, service_id: str) -> Dict[str, Any]:
        try:
            score = await self.store.get_score(service_id)
        except StorageError as e:
            return {"success": False, "error": str(e)}
        if score is None:
            return {"success": False, "error": "No reliability score for service"}
        return {"success": True, "score": score.to_dict()}

    async def debug_services(self) -> Dict[str, Any]:
        """Every registered service with its latest sample and sample count."""
        try:
            services = await self.store.list_all()
            rows = []
            for service in services:
                latest = await self.store.latest_for(service.id)
                rows.append({
                    "id": service.id,
                    "name": service.name,
                    "url": service.url,
                    "health_url": health_url(service.url),
                    "active": service.active,
                    "sample_count": await self.store.count_for(service.id),
                    "latest": None if latest is None else {
                        "status": latest.status,
                        "latency_ms": latest.latency_ms,
                        "response_code": latest.response_code,
                        "timestamp": latest.timestamp.isoformat(),
                    },
                })
        except StorageError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "total": len(rows), "services": rows}

    async def test_service_health(self, service_id: str) -> Dict[str, Any]:
        """Probe one service once and return the analysis without persisting anything."""
        try:
            service = await self.store.get_by_id(service_id)
        except StorageError as e:
            return {"success": False, "error": str(e)}
        if service is None:
            return {"success": False, "error": "Service not found"}

        probe = await self.checker.probe(self.http_client, service)
        return {
            "success": True,
            "service": {"id": service.id, "name": service.name, "url": service.url},
            "health_url": probe.url,
            "response_code": probe.response_code,
            "latency_ms": probe.latency_ms,
            "body": probe.body,
            "analysis": {
                "status": probe.status,
                "reason": probe.reason,
                "cpu_percent": probe.cpu_percent,
                "memory_mb": probe.memory_mb,
                "error": probe.error,
            },
        }

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Get status of a specific task."""
        if task_id in self.running_tasks:
            return self.running_tasks[task_id]

        for task in self.task_history:
            if task.get("task_id") == task_id:
                return task

        return None

    def get_system_status(self) -> Dict[str, Any]:
        """Get overall system status."""
        return {
            "scheduler": self.scheduler.get_scheduler_status(),
            "jobs": self.scheduler.list_jobs(),
            "alerts_enabled": self.dispatcher is not None,
            "live_subscribers": self.hub.subscriber_count,
            "running_tasks": len(self.running_tasks),
            "completed_tasks": len(self.task_history),
            "recent_tasks": [_summarize(t) for t in self.task_history[-5:]],
        }


def _summarize(task: Dict[str, Any]) -> Dict[str, Any]:
    keys = ("task_id", "type", "status", "success", "duration", "checked", "calculated", "error")
    out = {k: task[k] for k in keys if k in task}
    for k in ("start_time", "end_time"):
        if isinstance(task.get(k), datetime):
            out[k] = task[k].isoformat()
    return out
