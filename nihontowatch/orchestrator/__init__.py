"""Orchestration and scheduling"""

from .coordinator import JobCoordinator
from .scheduler import JobScheduler

__all__ = ["JobCoordinator", "JobScheduler"]
