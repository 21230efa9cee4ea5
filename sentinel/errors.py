"""Exceptions raised across the health monitor."""

from __future__ import annotations


class SentinelError(Exception):
    """Base class for health monitor errors."""


class StorageError(SentinelError):
    """A store read or write failed."""


class StorageUnavailableError(StorageError):
    """The backing store cannot be reached at all."""


class ChannelConfigError(SentinelError):
    """A notification channel is missing required settings."""

    def __init__(self, channel: str, missing: list[str]) -> None:
        self.channel = channel
        self.missing = list(missing)
        super().__init__(f"{channel} channel missing: {', '.join(self.missing)}")
