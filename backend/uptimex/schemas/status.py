"""Status schemas for the read-only monitoring API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class CycleReportResponse(BaseModel):
    """Counters from the most recent health check cycle."""
    started_at: datetime
    monitors_total: int
    checked: int
    up: int
    down: int
    errors: int
    alerts_sent: int
    aborted: bool
    duration_ms: int

    class Config:
        from_attributes = True


class SchedulerStatus(BaseModel):
    running: bool
    state: str  # idle, running
    interval_seconds: int
    concurrency: int
    pending_emails: int
    last_cycle: Optional[CycleReportResponse] = None


class StatusSummaryResponse(BaseModel):
    """Aggregated check statistics for one monitor."""
    monitor_id: int
    hours: int
    total_checks: int
    successful_checks: int
    uptime_percentage: float
    avg_response_time_ms: float
    last_status_code: Optional[int] = None
    last_checked_at: Optional[datetime] = None
    last_up_at: Optional[datetime] = None
    last_down_at: Optional[datetime] = None


class MonitorLogResponse(BaseModel):
    """One recorded check."""
    id: int
    monitor_id: int
    status_code: Optional[int] = None
    response_time_ms: int
    is_up: bool
    error_message: Optional[str] = None
    checked_at: datetime

    class Config:
        from_attributes = True


class AlertResponse(BaseModel):
    id: int
    monitor_id: int
    kind: str  # DOWN, SLOW, RECOVERED
    message: str
    sent_at: datetime
    email_sent: bool
    monitor_name: Optional[str] = None
    monitor_url: Optional[str] = None


class MonitorLogPage(BaseModel):
    items: List[MonitorLogResponse]
    count: int
