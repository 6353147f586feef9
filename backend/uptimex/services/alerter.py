"""Alerter service - throttles transitions into alerts and dispatches email."""
import asyncio
import html
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from ..models import AlertKind
from ..utils.db_utils import utcnow
from .email_sender import EmailSenderService
from .store import AlertRecord, MonitorSnapshot, Store

logger = logging.getLogger(__name__)

BANNER_COLORS = {
    AlertKind.DOWN: "#dc3545",
    AlertKind.SLOW: "#ffc107",
    AlertKind.RECOVERED: "#28a745",
}
DEFAULT_BANNER_COLOR = "#007bff"


def down_message(monitor: MonitorSnapshot, failures: int, last_error: Optional[str]) -> str:
    return (
        f'Your monitored URL "{monitor.name}" has been down for {failures} consecutive checks. '
        f"Last error: {last_error}"
    )


def recovered_message(monitor: MonitorSnapshot, previous_failures: int) -> str:
    return (
        f'Your monitored URL "{monitor.name}" is back up after '
        f"{previous_failures} consecutive failures."
    )


def slow_message(monitor: MonitorSnapshot, response_time_ms: int, threshold_ms: int) -> str:
    return (
        f'Your monitored URL "{monitor.name}" response time is {response_time_ms}ms '
        f"(threshold: {threshold_ms}ms)"
    )


def build_email_subject(kind: AlertKind) -> str:
    return f"UptimeX Alert: {AlertKind(kind).value}"


def build_email_html(kind: AlertKind, message: str, sent_at: datetime) -> str:
    """Render the alert email body."""
    kind = AlertKind(kind)
    color = BANNER_COLORS.get(kind, DEFAULT_BANNER_COLOR)
    return "\n".join([
        "<html>",
        '  <body style="font-family: Arial, sans-serif;">',
        f'    <div style="background-color: {color}; color: white; padding: 20px; '
        'border-radius: 5px; margin-bottom: 20px;">',
        f'      <h2 style="margin: 0;">UptimeX Alert: {kind.value}</h2>',
        "    </div>",
        '    <div style="padding: 20px; background-color: #f8f9fa; border-radius: 5px;">',
        f"      <p>{html.escape(message)}</p>",
        f"      <p><small>Sent at: {sent_at.strftime('%Y-%m-%d %H:%M:%S UTC')}</small></p>",
        "    </div>",
        "    <hr />",
        "    <p><small>You are receiving this email because you have monitoring alerts "
        "enabled on UptimeX.</small></p>",
        "  </body>",
        "</html>",
    ])


class AlerterService:
    """Decides whether a transition becomes an alert and sends the email.

    Throttling is keyed on (monitor, kind): a DOWN alert inside its window
    never suppresses a SLOW or RECOVERED alert for the same monitor.
    Email delivery runs as a detached task; its outcome is only visible in
    the logs and the alert's email_sent flag. Failed deliveries are not
    retried.
    """

    def __init__(
        self,
        store: Store,
        email_sender: EmailSenderService,
        throttle_minutes: int = 15,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._email_sender = email_sender
        self.throttle_window = timedelta(minutes=throttle_minutes)
        self._clock = clock
        self._deliveries: Set[asyncio.Task] = set()

    @property
    def pending_deliveries(self) -> int:
        return len(self._deliveries)

    async def should_throttle(self, monitor_id: int, kind: AlertKind, now: datetime) -> bool:
        history = await self._store.get_alert_history(monitor_id, kind)
        if history is None:
            return False
        return now - history.last_sent_at < self.throttle_window

    async def try_alert(
        self,
        monitor: MonitorSnapshot,
        kind: AlertKind,
        message: str,
        consecutive_count: int,
    ) -> Optional[AlertRecord]:
        """Persist an alert and start its email, or return None if throttled.

        A throttled call has no side effects. Storage errors propagate to
        the caller; email errors never do.
        """
        now = self._clock()
        if await self.should_throttle(monitor.id, kind, now):
            logger.info(f"Alert throttled for monitor {monitor.id} ({monitor.name}): {kind.value}")
            return None

        alert = await self._store.record_alert(
            monitor.id, monitor.user_id, kind, message, now, consecutive_count
        )
        logger.info(f"[ALERT] Monitor {monitor.id} ({monitor.name}) is {kind.value}")

        task = asyncio.create_task(self._deliver(alert, monitor.user_email))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return alert

    async def _deliver(self, alert: AlertRecord, to: str) -> None:
        subject = build_email_subject(alert.kind)
        body = build_email_html(alert.kind, alert.message, alert.sent_at)
        try:
            sent = await self._email_sender.send_email(to, subject, body)
            if not sent:
                logger.warning(f"Email for alert {alert.id} was not delivered; left unsent")
                return
            await self._store.mark_alert_email_sent(alert.id)
        except Exception:
            logger.exception(f"Email delivery for alert {alert.id} failed")

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight email deliveries. Returns False on timeout."""
        if not self._deliveries:
            return True
        _, pending = await asyncio.wait(set(self._deliveries), timeout=timeout)
        return not pending
