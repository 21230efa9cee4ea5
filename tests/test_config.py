from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from sentinel.config import load_config


_ENV_NAMES = (
    "SENTINEL_CONFIG",
    "SENTINEL_ENV",
    "LOG_LEVEL",
    "SENTINEL_DB_PATH",
    "HEALTH_CHECK_INTERVAL",
    "HEALTH_TIMEOUT",
    "ALERT_THROTTLE_MINUTES",
    "EMAIL_HOST",
    "EMAIL_PORT",
    "EMAIL_SECURE",
    "EMAIL_USER",
    "EMAIL_PASS",
    "SLACK_WEBHOOK_URL",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "WHATSAPP_PHONE_NUMBER_ID",
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_CHAT_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "sentinel.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_defaults_when_file_is_missing(tmp_path: Path) -> None:
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config.health_check_interval_seconds == 10
    assert config.latency_threshold_ms == 1000
    assert config.slo_window_days == 7
    assert config.default_slo_target == 99.9
    assert config.alert_throttle_minutes == 15
    assert config.channels.email.host == "smtp.gmail.com"
    assert config.channels.email.port == 587
    assert config.services == []


def test_yaml_services_projects_and_rules(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
health_check_interval_seconds: 30
projects:
  - id: shop
    name: Shop
    owner_email: owner@example.com
services:
  - id: checkout
    name: checkout-api
    url: http://localhost:4001
    project_id: shop
    slo_target: 99.5
alert_rules:
  - service_id: checkout
    rules:
      notify_on_degraded: false
    channels:
      slack:
        enabled: true
        webhook_url: https://hooks.slack.test/abc
""",
    )
    config = load_config(path)
    assert config.health_check_interval_seconds == 30
    assert config.projects[0].to_project().owner_email == "owner@example.com"

    service = config.services[0].to_service()
    assert service.slo_target == 99.5
    assert service.group == "Default"
    assert service.active is True

    rule = config.alert_rules[0]
    assert rule.allows("down") is True
    assert rule.allows("degraded") is False
    assert rule.channels.slack.is_usable() is True
    assert rule.channels.telegram.is_usable() is False


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, "channels:\n  email:\n    host: smtp.internal\n    user: file-user\n")
    monkeypatch.setenv("EMAIL_USER", "env-user")
    monkeypatch.setenv("EMAIL_PASS", "env-pass")
    monkeypatch.setenv("EMAIL_PORT", "465")
    monkeypatch.setenv("EMAIL_SECURE", "true")
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/env")
    monkeypatch.setenv("HEALTH_CHECK_INTERVAL", "15")

    config = load_config(path)
    email = config.channels.email
    assert email.host == "smtp.internal"
    assert email.user == "env-user"
    assert email.password == "env-pass"
    assert email.port == 465
    assert email.secure is True
    assert email.is_configured() is True
    assert email.from_address() == '"Sentinel Monitor" <env-user>'
    assert config.channels.slack_webhook_url == "https://hooks.slack.test/env"
    assert config.health_check_interval_seconds == 15


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SENTINEL_CONFIG", _write(tmp_path, "environment: staging\n"))
    assert load_config().environment == "staging"


def test_invalid_values_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        load_config(_write(tmp_path, "default_slo_target: 150\n"))
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, "- just\n- a list\n"))
