"""Configuration management for the health monitor."""

import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .models import Project, Service
from .notifications.channels import ChannelDefaults
from .notifications.rules import AlertRule


class ProjectSeed(BaseModel):
    id: str
    name: str
    owner_email: Optional[str] = None

    def to_project(self) -> Project:
        return Project(id=self.id, name=self.name, owner_email=self.owner_email)


class ServiceSeed(BaseModel):
    """Service entry declared in the config file."""
    id: str
    name: str
    url: str
    project_id: Optional[str] = None
    metrics_url: Optional[str] = None
    group: str = "Default"
    owner_email: Optional[str] = None
    active: bool = True
    slo_target: Optional[float] = None

    def to_service(self) -> Service:
        return Service(
            id=self.id,
            name=self.name,
            url=self.url,
            project_id=self.project_id,
            metrics_url=self.metrics_url,
            group=self.group,
            owner_email=self.owner_email,
            active=self.active,
            slo_target=self.slo_target,
        )


class SentinelConfig(BaseModel):
    """Main configuration for the health monitor."""

    # Environment settings
    environment: str = Field(default="production", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # Storage
    database_path: str = Field(default="data/sentinel.db", description="SQLite database file")

    # Scheduling settings
    health_check_interval_seconds: int = Field(default=10, ge=1, description="Health poll interval")
    reliability_schedule_cron: str = Field(default="0 * * * *", description="Cron expression for SLO recompute")
    initial_check_delay_seconds: float = Field(default=2.0, ge=0, description="Delay before the first poll")

    # Probe settings
    health_timeout_seconds: float = Field(default=5.0, gt=0, description="Health endpoint timeout")
    metrics_timeout_seconds: float = Field(default=3.0, gt=0, description="Metrics endpoint timeout")

    # Detection and reliability
    latency_threshold_ms: float = Field(default=1000, ge=0, description="Latency incident threshold")
    slo_window_days: int = Field(default=7, ge=1, description="Trailing window for reliability scores")
    default_slo_target: float = Field(default=99.9, gt=0, le=100, description="Default SLO target percent")

    # Alerting
    alerts_enabled: bool = Field(default=True, description="Dispatch alerts on status changes")
    alert_throttle_minutes: float = Field(default=15, ge=0, description="Repeat-alert cooldown")
    channels: ChannelDefaults = Field(default_factory=ChannelDefaults)

    # Seed data for single-process deployments
    projects: list[ProjectSeed] = Field(default_factory=list)
    services: list[ServiceSeed] = Field(default_factory=list)
    alert_rules: list[AlertRule] = Field(default_factory=list)

    # API
    api_host: str = Field(default="0.0.0.0", description="Bind address for the API")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")


_ENV_OVERRIDES: Dict[str, tuple[str, ...]] = {
    "SENTINEL_ENV": ("environment",),
    "LOG_LEVEL": ("log_level",),
    "SENTINEL_DB_PATH": ("database_path",),
    "HEALTH_CHECK_INTERVAL": ("health_check_interval_seconds",),
    "HEALTH_TIMEOUT": ("health_timeout_seconds",),
    "ALERT_THROTTLE_MINUTES": ("alert_throttle_minutes",),
    "EMAIL_HOST": ("channels", "email", "host"),
    "EMAIL_PORT": ("channels", "email", "port"),
    "EMAIL_SECURE": ("channels", "email", "secure"),
    "EMAIL_USER": ("channels", "email", "user"),
    "EMAIL_PASS": ("channels", "email", "password"),
    "SLACK_WEBHOOK_URL": ("channels", "slack_webhook_url"),
    "TELEGRAM_BOT_TOKEN": ("channels", "telegram_bot_token"),
    "TELEGRAM_CHAT_ID": ("channels", "telegram_chat_id"),
    "WHATSAPP_PHONE_NUMBER_ID": ("channels", "whatsapp_phone_number_id"),
    "WHATSAPP_ACCESS_TOKEN": ("channels", "whatsapp_access_token"),
    "WHATSAPP_CHAT_ID": ("channels", "whatsapp_chat_id"),
}

_BOOL_KEYS = {"secure"}


def _set_path(data: Dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = data
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


def load_config(config_path: Optional[str] = None) -> SentinelConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("SENTINEL_CONFIG", "config/sentinel.yaml")

    config_data: Dict[str, Any] = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, 'r', encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Config YAML must be a mapping")

    # Override with environment variables; pydantic coerces numeric strings
    for env_name, path in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None:
            continue
        if path[-1] in _BOOL_KEYS:
            value = value.strip().lower() in ("true", "1", "yes")
        _set_path(config_data, path, value)

    return SentinelConfig(**config_data)


def get_config() -> SentinelConfig:
    """Get the global configuration instance."""
    return load_config()
