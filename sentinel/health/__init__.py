"""Health probing and status classification."""

from .checker import HealthChecker, ProbeResult
from .classifier import Classification, classify, parse_health_body

__all__ = ["HealthChecker", "ProbeResult", "Classification", "classify", "parse_health_body"]
