"""Scheduling of health-check and reliability runs."""

from .coordinator import MonitorCoordinator
from .job_scheduler import JobScheduler
from .poller import HealthPoller, PollResult

__all__ = ["HealthPoller", "JobScheduler", "MonitorCoordinator", "PollResult"]
