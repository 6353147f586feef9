from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import uptimex.models  # noqa: F401  (registers tables)
from uptimex.database import Base
from uptimex.models import AlertKind
from uptimex.services.checker import CheckResult
from uptimex.services.store import AlertHistoryEntry, AlertRecord, MonitorSnapshot


def make_monitor(monitor_id: int, name: Optional[str] = None, user_id: int = 1) -> MonitorSnapshot:
    return MonitorSnapshot(
        id=monitor_id,
        user_id=user_id,
        user_email=f"owner{user_id}@example.com",
        name=name or f"monitor-{monitor_id}",
        url=f"https://example.com/{monitor_id}",
    )


def up(response_time_ms: int = 50, status_code: int = 200) -> CheckResult:
    return CheckResult(status_code=status_code, response_time_ms=response_time_ms, is_up=True)


def down(error: Optional[str] = "Connection refused", status_code: Optional[int] = None) -> CheckResult:
    return CheckResult(status_code=status_code, response_time_ms=12, is_up=False, error_message=error)


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeStore:
    """In-memory stand-in for MonitorStore with injectable failures."""

    def __init__(self, monitors: Optional[List[MonitorSnapshot]] = None):
        self.monitors: List[MonitorSnapshot] = list(monitors or [])
        self.logs: List[Tuple[int, CheckResult]] = []
        self.alerts: List[AlertRecord] = []
        self.history: Dict[Tuple[int, AlertKind], AlertHistoryEntry] = {}
        self.fail_listing = False
        self.fail_append_for: set[int] = set()
        self.fail_create_alert = False

    async def list_active_monitors(self) -> List[MonitorSnapshot]:
        if self.fail_listing:
            raise RuntimeError("database unavailable")
        return list(self.monitors)

    async def append_log(self, monitor_id: int, result: CheckResult) -> int:
        await asyncio.sleep(0)
        if monitor_id in self.fail_append_for:
            raise RuntimeError(f"could not write log for {monitor_id}")
        self.logs.append((monitor_id, result))
        return len(self.logs)

    async def get_alert_history(self, monitor_id: int, kind: AlertKind) -> Optional[AlertHistoryEntry]:
        return self.history.get((monitor_id, AlertKind(kind)))

    async def upsert_alert_history(
        self, monitor_id: int, kind: AlertKind, consecutive_count: int, sent_at: datetime
    ) -> None:
        kind = AlertKind(kind)
        self.history[(monitor_id, kind)] = AlertHistoryEntry(monitor_id, kind, sent_at, consecutive_count)

    async def create_alert(
        self, monitor_id: int, user_id: int, kind: AlertKind, message: str, sent_at: datetime
    ) -> AlertRecord:
        if self.fail_create_alert:
            raise RuntimeError("could not insert alert")
        alert = AlertRecord(
            id=len(self.alerts) + 1,
            monitor_id=monitor_id,
            user_id=user_id,
            kind=AlertKind(kind),
            message=message,
            sent_at=sent_at,
        )
        self.alerts.append(alert)
        return alert

    async def record_alert(
        self,
        monitor_id: int,
        user_id: int,
        kind: AlertKind,
        message: str,
        sent_at: datetime,
        consecutive_count: int,
    ) -> AlertRecord:
        alert = await self.create_alert(monitor_id, user_id, kind, message, sent_at)
        await self.upsert_alert_history(monitor_id, kind, consecutive_count, sent_at)
        return alert

    async def mark_alert_email_sent(self, alert_id: int) -> None:
        self.alerts = [
            dataclasses.replace(a, email_sent=True) if a.id == alert_id else a for a in self.alerts
        ]

    def alerts_of(self, kind: AlertKind) -> List[AlertRecord]:
        return [a for a in self.alerts if a.kind == kind]


class FakeEmailSender:
    def __init__(self, succeed: bool = True, error: Optional[Exception] = None):
        self.succeed = succeed
        self.error = error
        self.sent: List[Tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        self.sent.append((to, subject, html_body))
        return self.succeed


class ScriptedChecker:
    """Returns queued results per monitor and tracks concurrency."""

    def __init__(self, default: Optional[CheckResult] = None, delay: float = 0.0):
        self.default = default or up()
        self.delay = delay
        self.delays: Dict[int, float] = {}
        self.scripts: Dict[int, List[CheckResult]] = {}
        self.errors: Dict[int, Exception] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.started: List[int] = []
        self.finished: List[int] = []

    def script(self, monitor_id: int, *results: CheckResult) -> None:
        self.scripts.setdefault(monitor_id, []).extend(results)

    async def check(self, monitor) -> CheckResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.append(monitor.id)
        try:
            await asyncio.sleep(self.delays.get(monitor.id, self.delay))
            if monitor.id in self.errors:
                raise self.errors[monitor.id]
            queue = self.scripts.get(monitor.id)
            return queue.pop(0) if queue else self.default
        finally:
            self.in_flight -= 1
            self.finished.append(monitor.id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()
