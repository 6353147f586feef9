"""Database models."""
from .user import User
from .monitor import Monitor
from .monitor_log import MonitorLog
from .alert import Alert, AlertKind
from .alert_history import AlertHistory

__all__ = ["User", "Monitor", "MonitorLog", "Alert", "AlertKind", "AlertHistory"]
