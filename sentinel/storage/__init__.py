"""Store protocols and their in-memory and SQLite implementations."""

from .base import (
    AlertLogStore,
    AlertRuleStore,
    IncidentStore,
    ReliabilityScoreStore,
    SampleStore,
    ServiceRegistry,
    Store,
)
from .memory import InMemoryStore
from .sqlite import SQLiteStore

__all__ = [
    "AlertLogStore",
    "AlertRuleStore",
    "IncidentStore",
    "InMemoryStore",
    "ReliabilityScoreStore",
    "SQLiteStore",
    "SampleStore",
    "ServiceRegistry",
    "Store",
]
