"""Notification channels: process-wide defaults, per-channel targets and the sender protocol.

A *target* is everything one channel needs to deliver one alert (webhook URL,
bot token and chat, recipient list...). Targets are resolved per alert from the
service's ``AlertRule`` first and the process-wide ``ChannelDefaults`` second.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

import structlog
from pydantic import BaseModel, Field

from ..errors import ChannelConfigError
from ..models import CHANNEL_EMAIL, CHANNEL_SLACK, CHANNEL_TELEGRAM, CHANNEL_WHATSAPP, Service
from .rules import AlertRule


logger = structlog.get_logger(__name__)


class EmailSettings(BaseModel):
    """SMTP transport settings."""
    host: str = Field(default="smtp.gmail.com", description="SMTP host")
    port: int = Field(default=587, description="SMTP port")
    secure: bool = Field(default=False, description="Use implicit TLS instead of STARTTLS")
    user: str = Field(default="", description="SMTP login")
    password: str = Field(default="", description="SMTP password")
    sender: str = Field(default="", description="From address; defaults to the login")

    def is_configured(self) -> bool:
        return bool(self.user.strip()) and bool(self.password)

    def from_address(self) -> str:
        return f'"Sentinel Monitor" <{self.sender or self.user}>'


class ChannelDefaults(BaseModel):
    """Process-wide channel credentials used when a rule does not configure the channel."""
    email: EmailSettings = Field(default_factory=EmailSettings)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_access_token: str = ""
    whatsapp_chat_id: str = ""


@dataclass(frozen=True)
class AlertMessage:
    subject: str
    text: str
    html: str = ""


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "SendResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(success=False, error=error or "unknown error")


def _require(channel: str, **fields: object) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ChannelConfigError(channel, missing)


@dataclass(frozen=True)
class EmailTarget:
    recipients: tuple[str, ...]
    settings: EmailSettings

    def __post_init__(self) -> None:
        _require(
            CHANNEL_EMAIL,
            recipients=self.recipients,
            user=self.settings.user.strip(),
            password=self.settings.password,
        )


@dataclass(frozen=True)
class SlackTarget:
    webhook_url: str

    def __post_init__(self) -> None:
        _require(CHANNEL_SLACK, webhook_url=self.webhook_url.strip())


@dataclass(frozen=True)
class TelegramTarget:
    bot_token: str
    chat_id: str

    def __post_init__(self) -> None:
        _require(CHANNEL_TELEGRAM, bot_token=self.bot_token.strip(), chat_id=self.chat_id.strip())


@dataclass(frozen=True)
class WhatsAppTarget:
    phone_number_id: str
    access_token: str
    to: str

    def __post_init__(self) -> None:
        _require(
            CHANNEL_WHATSAPP,
            phone_number_id=self.phone_number_id.strip(),
            access_token=self.access_token.strip(),
            to=self.to.strip(),
        )


ChannelTarget = Union[EmailTarget, SlackTarget, TelegramTarget, WhatsAppTarget]


class ChannelSender(Protocol):
    """Delivers one message to one target. May return a failed result or raise."""

    async def send(self, target: ChannelTarget, message: AlertMessage) -> SendResult: ...


def resolve_recipients(
    rule: Optional[AlertRule],
    service: Service,
    project_owner_email: Optional[str] = None,
) -> list[str]:
    """Rule recipients plus the service owner, deduplicated; the project owner only if both are empty."""
    recipients: list[str] = []
    candidates = list(rule.rule_recipients() if rule else [])
    candidates.append((service.owner_email or "").strip())
    for email in candidates:
        if email and email not in recipients:
            recipients.append(email)
    if not recipients and project_owner_email and project_owner_email.strip():
        recipients.append(project_owner_email.strip())
    return recipients


def resolve_targets(
    rule: Optional[AlertRule],
    defaults: ChannelDefaults,
    *,
    service: Service,
    recipients: list[str],
) -> dict[str, ChannelTarget]:
    """Pick the target for every channel that can be attempted for this alert.

    A channel configured and enabled on the rule wins; otherwise the process-wide
    default is used when present. Channels with neither are left out.
    """
    candidates: dict[str, Callable[[], ChannelTarget]] = {}
    channels = rule.channels if rule else None

    if recipients:
        candidates[CHANNEL_EMAIL] = lambda: EmailTarget(recipients=tuple(recipients), settings=defaults.email)

    if channels and channels.slack.is_usable():
        candidates[CHANNEL_SLACK] = lambda: SlackTarget(webhook_url=channels.slack.webhook_url.strip())
    elif defaults.slack_webhook_url:
        candidates[CHANNEL_SLACK] = lambda: SlackTarget(webhook_url=defaults.slack_webhook_url.strip())

    if channels and channels.telegram.is_usable():
        candidates[CHANNEL_TELEGRAM] = lambda: TelegramTarget(
            bot_token=channels.telegram.bot_token.strip(), chat_id=channels.telegram.chat_id.strip()
        )
    elif defaults.telegram_bot_token and defaults.telegram_chat_id:
        candidates[CHANNEL_TELEGRAM] = lambda: TelegramTarget(
            bot_token=defaults.telegram_bot_token.strip(), chat_id=defaults.telegram_chat_id.strip()
        )

    if channels and channels.whatsapp.is_usable():
        wa = channels.whatsapp
        candidates[CHANNEL_WHATSAPP] = lambda: WhatsAppTarget(
            phone_number_id=wa.phone_number_id.strip(),
            access_token=wa.access_token.strip(),
            to=(wa.chat_id or defaults.whatsapp_chat_id or service.owner_email or "").strip(),
        )
    elif defaults.whatsapp_access_token:
        candidates[CHANNEL_WHATSAPP] = lambda: WhatsAppTarget(
            phone_number_id=defaults.whatsapp_phone_number_id.strip(),
            access_token=defaults.whatsapp_access_token.strip(),
            to=(defaults.whatsapp_chat_id or service.owner_email or "").strip(),
        )

    targets: dict[str, ChannelTarget] = {}
    for channel, build in candidates.items():
        try:
            targets[channel] = build()
        except ChannelConfigError as e:
            logger.info("Channel skipped", service=service.name, channel=channel, missing=e.missing)
    return targets
