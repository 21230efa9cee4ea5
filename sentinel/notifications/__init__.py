"""Alert rules, channel targets and the throttled alert dispatcher."""

from .rules import AlertRule
from .channels import AlertMessage, ChannelDefaults, ChannelSender, EmailSettings, SendResult
from .throttle import AlertThrottle
from .dispatcher import AlertDispatcher

__all__ = [
    "AlertDispatcher",
    "AlertMessage",
    "AlertRule",
    "AlertThrottle",
    "ChannelDefaults",
    "ChannelSender",
    "EmailSettings",
    "SendResult",
]
