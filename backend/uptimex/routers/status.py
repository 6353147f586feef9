"""Read-only status API for the health checker and recorded checks."""
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..schemas.status import (
    AlertResponse,
    CycleReportResponse,
    MonitorLogPage,
    MonitorLogResponse,
    SchedulerStatus,
    StatusSummaryResponse,
)
from ..services.lifecycle import HealthCheckLifecycle
from ..services.store import MonitorStore

router = APIRouter(prefix="/api/status", tags=["status"])


def get_lifecycle(request: Request) -> HealthCheckLifecycle:
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise HTTPException(status_code=503, detail="Health checker not started")
    return lifecycle


def get_store(lifecycle: HealthCheckLifecycle = Depends(get_lifecycle)) -> MonitorStore:
    store = lifecycle.scheduler.store
    if not isinstance(store, MonitorStore):
        raise HTTPException(status_code=503, detail="Status queries need a database store")
    return store


@router.get("/scheduler", response_model=SchedulerStatus)
async def get_scheduler_status(lifecycle: HealthCheckLifecycle = Depends(get_lifecycle)):
    """Scheduler state and the last cycle's counters."""
    scheduler = lifecycle.scheduler
    last = scheduler.last_report
    return SchedulerStatus(
        running=scheduler.is_running,
        state=scheduler.state,
        interval_seconds=scheduler.interval_seconds,
        concurrency=scheduler.concurrency,
        pending_emails=scheduler.alerter.pending_deliveries,
        last_cycle=CycleReportResponse.model_validate(last) if last else None,
    )


@router.get("/monitors/{monitor_id}/summary", response_model=StatusSummaryResponse)
async def get_monitor_summary(
    monitor_id: int,
    hours: int = Query(24, ge=1, le=24 * 90),
    store: MonitorStore = Depends(get_store),
):
    """Uptime and response time statistics over the trailing window."""
    summary = await store.get_status_summary(monitor_id, hours=hours)
    return StatusSummaryResponse(monitor_id=monitor_id, hours=hours, **asdict(summary))


@router.get("/monitors/{monitor_id}/logs", response_model=MonitorLogPage)
async def get_monitor_logs(
    monitor_id: int,
    limit: int = Query(50, ge=1, le=500),
    store: MonitorStore = Depends(get_store),
):
    """Most recent checks, newest first."""
    logs = await store.get_recent_logs(monitor_id, limit=limit)
    items = [MonitorLogResponse.model_validate(log) for log in logs]
    return MonitorLogPage(items=items, count=len(items))


@router.get("/users/{user_id}/alerts", response_model=List[AlertResponse])
async def get_user_alerts(
    user_id: int,
    limit: int = Query(50, ge=1, le=500),
    store: MonitorStore = Depends(get_store),
):
    """Most recent alerts raised for a user's monitors."""
    alerts = await store.get_user_alerts(user_id, limit=limit)
    return [
        AlertResponse(
            id=a.id,
            monitor_id=a.monitor_id,
            kind=a.kind.value,
            message=a.message,
            sent_at=a.sent_at,
            email_sent=a.email_sent,
            monitor_name=a.monitor_name,
            monitor_url=a.monitor_url,
        )
        for a in alerts
    ]
