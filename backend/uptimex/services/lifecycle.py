"""Lifecycle controller - builds the health check core and runs it with the process."""
import asyncio
import logging
from typing import Optional

from ..config import Settings
from .alerter import AlerterService
from .checker import CheckerService
from .email_sender import EmailConfig, EmailSenderService
from .scheduler import SchedulerService
from .store import MonitorStore, Store
from .streaks import FailureStreakTracker

logger = logging.getLogger(__name__)


class HealthCheckLifecycle:
    """Starts and stops the scheduler in step with process startup/shutdown."""

    def __init__(self, scheduler: SchedulerService):
        self.scheduler = scheduler

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[Store] = None,
        email_sender: Optional[EmailSenderService] = None,
        checker: Optional[CheckerService] = None,
    ) -> "HealthCheckLifecycle":
        """Wire every component from validated settings.

        The failure-streak state is created here, once per process, and
        handed to the scheduler that owns it.
        """
        store = store or MonitorStore()
        email_sender = email_sender or EmailSenderService(EmailConfig.from_settings(settings))
        checker = checker or CheckerService(timeout_ms=settings.probe_timeout_ms)
        tracker = FailureStreakTracker(
            failure_threshold=settings.consecutive_failures_threshold,
            slow_threshold_ms=settings.slow_response_threshold_ms,
        )
        alerter = AlerterService(
            store,
            email_sender,
            throttle_minutes=settings.alert_throttle_minutes,
        )
        scheduler = SchedulerService(
            store,
            checker,
            tracker,
            alerter,
            interval_seconds=settings.check_interval_seconds,
            concurrency=settings.check_concurrency,
            max_concurrent_cycles=settings.max_concurrent_cycles,
        )
        return cls(scheduler)

    def start(self) -> SchedulerService:
        """Begin scheduling cycles; returns the running scheduler as a handle."""
        self.scheduler.start()
        return self.scheduler

    def stop(self):
        """Stop future ticks without touching in-flight work."""
        self.scheduler.stop()

    async def shutdown(self, grace_seconds: float = 10) -> bool:
        """Stop, then wait up to ``grace_seconds`` for cycles and emails.

        Returns True if everything finished in time. Either way the
        scheduler is torn down and the caller can proceed.
        """
        self.stop()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_seconds

        idle = await self.scheduler.wait_idle(timeout=grace_seconds)
        remaining = max(0.0, deadline - loop.time())
        drained = await self.scheduler.alerter.drain(timeout=remaining)

        if not idle:
            logger.warning(f"[SHUTDOWN] Health check cycle still running after {grace_seconds}s; proceeding")
        if not drained:
            logger.warning(
                f"[SHUTDOWN] {self.scheduler.alerter.pending_deliveries} alert email(s) still in flight; proceeding"
            )

        self.scheduler.shutdown()
        logger.info("[SHUTDOWN] Health checker stopped")
        return idle and drained
