"""Store service - persistence operations used by the health check core.

The scheduler, tracker and alerter only talk to storage through the
``Store`` protocol below; ``MonitorStore`` is the SQLAlchemy implementation.
Every method opens its own session so one monitor's failure never leaves a
shared transaction half-applied for another.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database import async_session
from ..models import Alert, AlertHistory, AlertKind, Monitor, MonitorLog, User
from ..models.monitor import MIN_INTERVAL_SECONDS
from ..utils.db_utils import retry_on_lock, utcnow
from ..utils.url_validator import is_valid_url, normalize_url
from .checker import CheckResult

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


class MonitorValidationError(ValueError):
    """Raised when monitor fields fail validation."""


@dataclass(frozen=True)
class MonitorSnapshot:
    """Read-only view of an active monitor, with its owner's email."""
    id: int
    user_id: int
    user_email: str
    name: str
    url: str
    method: str = "GET"
    interval_seconds: int = 60
    description: Optional[str] = None


@dataclass(frozen=True)
class AlertHistoryEntry:
    monitor_id: int
    kind: AlertKind
    last_sent_at: datetime
    consecutive_count: int


@dataclass(frozen=True)
class AlertRecord:
    id: int
    monitor_id: int
    user_id: int
    kind: AlertKind
    message: str
    sent_at: datetime
    email_sent: bool = False
    monitor_name: Optional[str] = None
    monitor_url: Optional[str] = None
    user_email: Optional[str] = None


@dataclass(frozen=True)
class StatusSummary:
    """Aggregated check statistics over a trailing window."""
    total_checks: int
    successful_checks: int
    uptime_percentage: float
    avg_response_time_ms: float
    last_status_code: Optional[int] = None
    last_checked_at: Optional[datetime] = None
    last_up_at: Optional[datetime] = None
    last_down_at: Optional[datetime] = None


class Store(Protocol):
    """Storage operations the health check core depends on."""

    async def list_active_monitors(self) -> List[MonitorSnapshot]: ...

    async def append_log(self, monitor_id: int, result: CheckResult) -> int: ...

    async def get_alert_history(self, monitor_id: int, kind: AlertKind) -> Optional[AlertHistoryEntry]: ...

    async def upsert_alert_history(
        self, monitor_id: int, kind: AlertKind, consecutive_count: int, sent_at: datetime
    ) -> None: ...

    async def create_alert(
        self, monitor_id: int, user_id: int, kind: AlertKind, message: str, sent_at: datetime
    ) -> AlertRecord: ...

    async def record_alert(
        self,
        monitor_id: int,
        user_id: int,
        kind: AlertKind,
        message: str,
        sent_at: datetime,
        consecutive_count: int,
    ) -> AlertRecord: ...

    async def mark_alert_email_sent(self, alert_id: int) -> None: ...


def _to_record(alert: Alert, **extra) -> AlertRecord:
    return AlertRecord(
        id=alert.id,
        monitor_id=alert.monitor_id,
        user_id=alert.user_id,
        kind=AlertKind(alert.alert_type),
        message=alert.message,
        sent_at=alert.sent_at,
        email_sent=bool(alert.email_sent),
        **extra,
    )


class MonitorStore:
    """SQLAlchemy-backed store for monitors, check logs and alerts."""

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self._session_factory = session_factory

    # --- monitors -----------------------------------------------------

    async def add_user(self, email: str) -> int:
        async with self._session_factory() as session:
            user = User(email=email.strip().lower(), created_at=utcnow())
            session.add(user)
            await retry_on_lock(session.commit)
            return user.id

    async def add_monitor(
        self,
        user_id: int,
        name: str,
        url: str,
        method: str = "GET",
        interval_seconds: int = 60,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> MonitorSnapshot:
        """Validate and insert a monitor.

        The URL is trimmed and defaults to https:// when no scheme is given.
        """
        if not name or not url:
            raise MonitorValidationError("Missing required fields: name, url")
        normalized = normalize_url(url)
        if not is_valid_url(normalized):
            raise MonitorValidationError("Invalid URL format")
        if interval_seconds < MIN_INTERVAL_SECONDS:
            raise MonitorValidationError(f"Interval must be at least {MIN_INTERVAL_SECONDS} seconds")
        method = (method or "GET").upper()
        if method not in HTTP_METHODS:
            raise MonitorValidationError(f"Unsupported HTTP method: {method}")

        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise MonitorValidationError(f"Unknown user {user_id}")
            now = utcnow()
            monitor = Monitor(
                user_id=user_id,
                name=name,
                description=description,
                url=normalized,
                method=method,
                interval_seconds=interval_seconds,
                is_active=is_active,
                created_at=now,
                updated_at=now,
            )
            session.add(monitor)
            await retry_on_lock(session.commit)
            return MonitorSnapshot(
                id=monitor.id,
                user_id=user_id,
                user_email=user.email,
                name=name,
                url=normalized,
                method=method,
                interval_seconds=interval_seconds,
                description=description,
            )

    async def list_active_monitors(self) -> List[MonitorSnapshot]:
        """All monitors with is_active set, joined to their owner's email."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Monitor, User.email)
                .join(User, Monitor.user_id == User.id)
                .where(Monitor.is_active.is_(True))
                .order_by(Monitor.id)
            )
            return [
                MonitorSnapshot(
                    id=monitor.id,
                    user_id=monitor.user_id,
                    user_email=email,
                    name=monitor.name,
                    url=monitor.url,
                    method=monitor.method or "GET",
                    interval_seconds=monitor.interval_seconds,
                    description=monitor.description,
                )
                for monitor, email in result.all()
            ]

    # --- check logs ---------------------------------------------------

    async def append_log(self, monitor_id: int, result: CheckResult) -> int:
        async with self._session_factory() as session:
            log = MonitorLog(
                monitor_id=monitor_id,
                status_code=result.status_code,
                response_time_ms=result.response_time_ms,
                is_up=result.is_up,
                error_message=result.error_message,
                checked_at=result.checked_at,
            )
            session.add(log)
            await retry_on_lock(session.commit)
            return log.id

    async def get_recent_logs(self, monitor_id: int, limit: int = 100) -> List[MonitorLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MonitorLog)
                .where(MonitorLog.monitor_id == monitor_id)
                .order_by(MonitorLog.checked_at.desc(), MonitorLog.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_logs_between(self, monitor_id: int, start: datetime, end: datetime) -> List[MonitorLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MonitorLog)
                .where(
                    MonitorLog.monitor_id == monitor_id,
                    MonitorLog.checked_at >= start,
                    MonitorLog.checked_at <= end,
                )
                .order_by(MonitorLog.checked_at.desc(), MonitorLog.id.desc())
            )
            return list(result.scalars().all())

    async def get_last_check(self, monitor_id: int) -> Optional[MonitorLog]:
        logs = await self.get_recent_logs(monitor_id, limit=1)
        return logs[0] if logs else None

    async def get_status_summary(self, monitor_id: int, hours: int = 24) -> StatusSummary:
        """Aggregate the last ``hours`` of check logs for one monitor."""
        cutoff = utcnow() - timedelta(hours=hours)
        async with self._session_factory() as session:
            row = (await session.execute(
                select(
                    func.count(MonitorLog.id),
                    func.sum(case((MonitorLog.is_up.is_(True), 1), else_=0)),
                    func.avg(MonitorLog.response_time_ms),
                    func.max(MonitorLog.checked_at),
                    func.max(case((MonitorLog.is_up.is_(True), MonitorLog.checked_at))),
                    func.max(case((MonitorLog.is_up.is_(False), MonitorLog.checked_at))),
                ).where(
                    MonitorLog.monitor_id == monitor_id,
                    MonitorLog.checked_at > cutoff,
                )
            )).one()

            last_status_code = None
            if row[0]:
                last_status_code = await session.scalar(
                    select(MonitorLog.status_code)
                    .where(MonitorLog.monitor_id == monitor_id, MonitorLog.checked_at > cutoff)
                    .order_by(MonitorLog.checked_at.desc(), MonitorLog.id.desc())
                    .limit(1)
                )

        total = int(row[0] or 0)
        successful = int(row[1] or 0)
        return StatusSummary(
            total_checks=total,
            successful_checks=successful,
            uptime_percentage=round(100.0 * successful / total, 2) if total else 0.0,
            avg_response_time_ms=round(float(row[2]), 2) if row[2] is not None else 0.0,
            last_status_code=last_status_code,
            last_checked_at=row[3],
            last_up_at=row[4],
            last_down_at=row[5],
        )

    # --- alerts -------------------------------------------------------

    async def get_alert_history(self, monitor_id: int, kind: AlertKind) -> Optional[AlertHistoryEntry]:
        async with self._session_factory() as session:
            history = await session.scalar(
                select(AlertHistory).where(
                    AlertHistory.monitor_id == monitor_id,
                    AlertHistory.alert_type == AlertKind(kind).value,
                )
            )
            if history is None:
                return None
            return AlertHistoryEntry(
                monitor_id=history.monitor_id,
                kind=AlertKind(history.alert_type),
                last_sent_at=history.last_sent_at,
                consecutive_count=history.consecutive_count,
            )

    async def _upsert_history(
        self,
        session,
        monitor_id: int,
        kind: AlertKind,
        consecutive_count: int,
        sent_at: datetime,
    ) -> None:
        conn = await session.connection()
        insert = postgresql.insert if conn.dialect.name == "postgresql" else sqlite.insert
        stmt = insert(AlertHistory).values(
            monitor_id=monitor_id,
            alert_type=AlertKind(kind).value,
            last_sent_at=sent_at,
            consecutive_count=consecutive_count,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AlertHistory.monitor_id, AlertHistory.alert_type],
            set_={"last_sent_at": sent_at, "consecutive_count": consecutive_count},
        )
        await session.execute(stmt)

    async def upsert_alert_history(
        self,
        monitor_id: int,
        kind: AlertKind,
        consecutive_count: int,
        sent_at: datetime,
    ) -> None:
        """Insert or refresh the single (monitor, kind) history row."""
        async with self._session_factory() as session:
            await self._upsert_history(session, monitor_id, kind, consecutive_count, sent_at)
            await retry_on_lock(session.commit)

    def _new_alert(
        self,
        monitor_id: int,
        user_id: int,
        kind: AlertKind,
        message: str,
        sent_at: datetime,
    ) -> Alert:
        return Alert(
            monitor_id=monitor_id,
            user_id=user_id,
            alert_type=AlertKind(kind).value,
            message=message,
            sent_at=sent_at,
            email_sent=False,
        )

    async def create_alert(
        self,
        monitor_id: int,
        user_id: int,
        kind: AlertKind,
        message: str,
        sent_at: datetime,
    ) -> AlertRecord:
        async with self._session_factory() as session:
            alert = self._new_alert(monitor_id, user_id, kind, message, sent_at)
            session.add(alert)
            await retry_on_lock(session.commit)
            return _to_record(alert)

    async def record_alert(
        self,
        monitor_id: int,
        user_id: int,
        kind: AlertKind,
        message: str,
        sent_at: datetime,
        consecutive_count: int,
    ) -> AlertRecord:
        """Insert the alert and refresh its throttle history in one transaction.

        Either both rows are written or neither is, so a stored alert always
        has a history row that throttles the next one.
        """
        async with self._session_factory() as session:
            alert = self._new_alert(monitor_id, user_id, kind, message, sent_at)
            session.add(alert)
            await session.flush()
            await self._upsert_history(session, monitor_id, kind, consecutive_count, sent_at)
            await retry_on_lock(session.commit)
            return _to_record(alert)

    async def mark_alert_email_sent(self, alert_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Alert).where(Alert.id == alert_id).values(email_sent=True)
            )
            await retry_on_lock(session.commit)

    async def get_user_alerts(self, user_id: int, limit: int = 50) -> List[AlertRecord]:
        """Newest alerts for a user, with the monitor's name and URL."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Alert, Monitor.name, Monitor.url)
                .join(Monitor, Alert.monitor_id == Monitor.id)
                .where(Alert.user_id == user_id)
                .order_by(Alert.sent_at.desc(), Alert.id.desc())
                .limit(limit)
            )
            return [
                _to_record(alert, monitor_name=name, monitor_url=url)
                for alert, name, url in result.all()
            ]

    async def get_unsent_alerts(self) -> List[AlertRecord]:
        """Alerts whose email never went out, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Alert, User.email, Monitor.url)
                .join(User, Alert.user_id == User.id)
                .join(Monitor, Alert.monitor_id == Monitor.id)
                .where(Alert.email_sent.is_(False))
                .order_by(Alert.sent_at.asc(), Alert.id.asc())
            )
            return [
                _to_record(alert, monitor_url=url, user_email=email)
                for alert, email, url in result.all()
            ]
