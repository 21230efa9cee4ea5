"""Sentinel: health polling, incident detection, SLO scoring and alerting for HTTP microservices."""

__version__ = "0.1.0"
