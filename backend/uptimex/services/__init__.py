"""Services for checking, scheduling, and alerting."""
from .checker import CheckerService
from .streaks import FailureStreakTracker
from .alerter import AlerterService
from .email_sender import EmailSenderService
from .scheduler import SchedulerService
from .store import MonitorStore
from .lifecycle import HealthCheckLifecycle

__all__ = [
    "CheckerService",
    "FailureStreakTracker",
    "AlerterService",
    "EmailSenderService",
    "SchedulerService",
    "MonitorStore",
    "HealthCheckLifecycle",
]
