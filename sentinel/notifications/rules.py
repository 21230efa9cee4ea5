"""Per-service alert rules (external configuration, read-only to the dispatcher)."""

from typing import Optional

from pydantic import BaseModel, Field

from ..models import STATUS_DEGRADED, STATUS_DOWN


class NotificationRules(BaseModel):
    """Which conditions should notify."""
    notify_on_down: bool = Field(default=True, description="Notify when a service goes down")
    notify_on_degraded: bool = Field(default=True, description="Notify when a service degrades")
    notify_on_high_latency: bool = Field(default=False, description="Notify on latency breaches")
    high_latency_threshold: float = Field(default=1000, description="Latency threshold in ms")
    notify_on_high_error_rate: bool = Field(default=False, description="Notify on error-rate breaches")
    high_error_rate_threshold: float = Field(default=5, description="Error-rate threshold in percent")
    notify_on_slo_violation: bool = Field(default=True, description="Notify on SLO violations")


class EmailChannelRule(BaseModel):
    enabled: bool = False
    recipients: list[str] = Field(default_factory=list)

    def is_usable(self) -> bool:
        return self.enabled and any(r.strip() for r in self.recipients)


class SlackChannelRule(BaseModel):
    enabled: bool = False
    webhook_url: str = ""

    def is_usable(self) -> bool:
        return self.enabled and bool(self.webhook_url.strip())


class TelegramChannelRule(BaseModel):
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""

    def is_usable(self) -> bool:
        return self.enabled and bool(self.bot_token.strip()) and bool(self.chat_id.strip())


class WhatsAppChannelRule(BaseModel):
    enabled: bool = False
    phone_number_id: str = ""
    access_token: str = ""
    chat_id: str = ""

    def is_usable(self) -> bool:
        return self.enabled and bool(self.access_token.strip()) and bool(self.phone_number_id.strip())


class AlertChannels(BaseModel):
    email: EmailChannelRule = Field(default_factory=EmailChannelRule)
    slack: SlackChannelRule = Field(default_factory=SlackChannelRule)
    telegram: TelegramChannelRule = Field(default_factory=TelegramChannelRule)
    whatsapp: WhatsAppChannelRule = Field(default_factory=WhatsAppChannelRule)


class AlertRule(BaseModel):
    """Alert configuration attached to one service."""
    service_id: str
    project_id: Optional[str] = None
    enabled: bool = True
    rules: NotificationRules = Field(default_factory=NotificationRules)
    channels: AlertChannels = Field(default_factory=AlertChannels)

    def allows(self, status: str) -> bool:
        """Return False when this rule disables notifications for the status."""
        if status == STATUS_DOWN:
            return self.rules.notify_on_down
        if status == STATUS_DEGRADED:
            return self.rules.notify_on_degraded
        return True

    def rule_recipients(self) -> list[str]:
        if not self.channels.email.is_usable():
            return []
        return [r.strip() for r in self.channels.email.recipients if r.strip()]
