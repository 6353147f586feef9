"""Scheduler service - runs the periodic health check cycle.

Design:
- A single APScheduler interval job drives cycles; the first cycle fires
  as soon as the scheduler starts.
- Each cycle lists the active monitors once and probes them with at most
  ``concurrency`` checks in flight (semaphore-gated, not fixed batches).
- Every monitor is an independent unit: a probe, log write or alert failure
  is logged and never aborts the cycle. Only a failed monitor listing
  aborts a cycle, and the next tick is still scheduled.
- Ticks that would overlap a running cycle are skipped unless
  ``max_concurrent_cycles`` allows more than one.
- Stopping removes the job; cycles already running finish in shielded
  tasks and are never cancelled by stop.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..models import AlertKind
from ..utils.db_utils import utcnow
from .alerter import AlerterService, down_message, recovered_message, slow_message
from .checker import CheckerService, CheckResult
from .store import MonitorSnapshot, Store
from .streaks import FailureStreakTracker, Transition

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "health_check_cycle"


@dataclass
class CycleReport:
    """Outcome counters for one pass over the active monitors."""
    started_at: datetime = field(default_factory=utcnow)
    monitors_total: int = 0
    checked: int = 0
    up: int = 0
    down: int = 0
    errors: int = 0
    alerts_sent: int = 0
    aborted: bool = False
    duration_ms: int = 0


@dataclass
class _MonitorOutcome:
    result: Optional[CheckResult] = None
    alerts_sent: int = 0
    failed: bool = False


class SchedulerService:
    """Owns the periodic timer and the failure-streak state it feeds."""

    def __init__(
        self,
        store: Store,
        checker: CheckerService,
        tracker: FailureStreakTracker,
        alerter: AlerterService,
        interval_seconds: int = 60,
        concurrency: int = 5,
        max_concurrent_cycles: int = 1,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.checker = checker
        self.tracker = tracker
        self.alerter = alerter
        self.interval_seconds = interval_seconds
        self.concurrency = concurrency
        self.max_concurrent_cycles = max_concurrent_cycles
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.last_report: Optional[CycleReport] = None
        self._running = False
        self._cycles: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        """True while ticks are being scheduled."""
        return self._running

    @property
    def cycles_in_flight(self) -> int:
        return len(self._cycles)

    @property
    def state(self) -> str:
        return "running" if self._cycles else "idle"

    def start(self):
        """Start the scheduler and trigger the first cycle immediately."""
        if self._running:
            return

        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.scheduler.add_job(
            self._on_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=CYCLE_JOB_ID,
            replace_existing=True,
            max_instances=self.max_concurrent_cycles,
            coalesce=True,
            misfire_grace_time=self.interval_seconds,
            next_run_time=datetime.now(timezone.utc),
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (interval={self.interval_seconds}s, "
            f"concurrency={self.concurrency}, max_cycles={self.max_concurrent_cycles})"
        )

    def stop(self):
        """Stop scheduling new ticks. In-flight cycles keep running."""
        if not self._running:
            return
        self._running = False
        if self.scheduler and self.scheduler.get_job(CYCLE_JOB_ID):
            self.scheduler.remove_job(CYCLE_JOB_ID)
        logger.info(f"Scheduler stopped ({len(self._cycles)} cycle(s) still in flight)")

    def shutdown(self):
        """Tear down the APScheduler instance once no more ticks are wanted."""
        self.stop()
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight cycles. Returns False if the timeout passed first."""
        if not self._cycles:
            return True
        _, pending = await asyncio.wait(set(self._cycles), timeout=timeout)
        return not pending

    async def _on_tick(self):
        # The cycle runs in its own task so shutting the scheduler down
        # never cancels it mid-flight.
        task = asyncio.ensure_future(self.run_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        await asyncio.shield(task)

    async def run_cycle(self) -> CycleReport:
        """Check every active monitor once."""
        report = CycleReport()
        started = time.perf_counter()
        logger.info(f"[HEALTH_CHECK] Starting cycle at {report.started_at.isoformat()}")

        try:
            monitors = await self.store.list_active_monitors()
        except Exception:
            logger.exception("[HEALTH_CHECK] Could not list active monitors; cycle aborted")
            report.aborted = True
            report.duration_ms = int((time.perf_counter() - started) * 1000)
            self.last_report = report
            return report

        monitors = _unique_by_id(monitors)
        self.tracker.prune(m.id for m in monitors)
        report.monitors_total = len(monitors)
        logger.info(f"[HEALTH_CHECK] Found {len(monitors)} active monitors")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def check_with_limit(monitor: MonitorSnapshot) -> _MonitorOutcome:
            async with semaphore:
                return await self._check_monitor(monitor)

        outcomes = await asyncio.gather(*[check_with_limit(m) for m in monitors])

        for outcome in outcomes:
            if outcome.result is not None:
                report.checked += 1
                if outcome.result.is_up:
                    report.up += 1
                else:
                    report.down += 1
            if outcome.failed:
                report.errors += 1
            report.alerts_sent += outcome.alerts_sent

        report.duration_ms = int((time.perf_counter() - started) * 1000)
        self.last_report = report
        logger.info(
            f"[HEALTH_CHECK] Cycle completed in {report.duration_ms}ms: "
            f"{report.up} up, {report.down} down, {report.errors} errors, {report.alerts_sent} alerts"
        )
        return report

    async def _check_monitor(self, monitor: MonitorSnapshot) -> _MonitorOutcome:
        """Probe, record and alert for one monitor. Never raises."""
        outcome = _MonitorOutcome()
        try:
            result = await self.checker.check(monitor)
            outcome.result = result
            await self.store.append_log(monitor.id, result)
        except Exception:
            logger.exception(f"[ERROR] Health check failed for monitor {monitor.id} ({monitor.name})")
            outcome.failed = True
            return outcome

        transitions = self.tracker.record(monitor.id, result.is_up, result.response_time_ms)
        for transition in transitions:
            try:
                alert = await self.alerter.try_alert(
                    monitor,
                    transition.kind,
                    self._message_for(monitor, transition, result),
                    transition.consecutive_count,
                )
            except Exception:
                logger.exception(
                    f"[ERROR] Could not record {transition.kind.value} alert for monitor {monitor.id}"
                )
                outcome.failed = True
                continue
            if alert is not None:
                outcome.alerts_sent += 1

        logger.debug(f"Monitor {monitor.name}: {'up' if result.is_up else 'down'} ({result.response_time_ms}ms)")
        return outcome

    def _message_for(self, monitor: MonitorSnapshot, transition: Transition, result: CheckResult) -> str:
        if transition.kind == AlertKind.DOWN:
            last_error = result.error_message or f"HTTP {result.status_code}"
            return down_message(monitor, transition.consecutive_count, last_error)
        if transition.kind == AlertKind.RECOVERED:
            return recovered_message(monitor, transition.previous_failures)
        return slow_message(monitor, result.response_time_ms, self.tracker.slow_threshold_ms)


def _unique_by_id(monitors: List[MonitorSnapshot]) -> List[MonitorSnapshot]:
    seen = set()
    unique = []
    for monitor in monitors:
        if monitor.id in seen:
            continue
        seen.add(monitor.id)
        unique.append(monitor)
    return unique
