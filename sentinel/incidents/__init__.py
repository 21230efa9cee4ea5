"""Incident open/resolve state machines."""

from .detector import DetectionOutcome, IncidentDetector

__all__ = ["DetectionOutcome", "IncidentDetector"]
