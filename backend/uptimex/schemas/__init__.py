"""Pydantic schemas for API response models."""
from .status import (
    AlertResponse,
    CycleReportResponse,
    MonitorLogPage,
    MonitorLogResponse,
    SchedulerStatus,
    StatusSummaryResponse,
)

__all__ = [
    "AlertResponse",
    "CycleReportResponse",
    "MonitorLogPage",
    "MonitorLogResponse",
    "SchedulerStatus",
    "StatusSummaryResponse",
]
