"""Failure-streak tracker - turns check results into DOWN/RECOVERED/SLOW transitions.

State is an in-memory map of monitor id -> consecutive failure count. It is
owned by the scheduler and lives exactly as long as the process: a restart
starts every monitor at zero. After a restart a monitor that was already down
has to fail ``threshold`` more times before DOWN fires again, and its first
success produces no RECOVERED because nothing was counted. The same holds
for a monitor that drops out of the active listing: its streak is pruned
at the next cycle and starts from zero if it comes back.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

from ..models import AlertKind


@dataclass(frozen=True)
class Transition:
    """A state change worth alerting on."""
    kind: AlertKind
    consecutive_count: int
    previous_failures: int = 0


class FailureStreakTracker:
    """Per-monitor consecutive failure counter.

    Each monitor is probed at most once per cycle, so updates for one key
    never interleave and no lock is needed.
    """

    def __init__(self, failure_threshold: int = 3, slow_threshold_ms: int = 5000):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.slow_threshold_ms = slow_threshold_ms
        self._failures: Dict[int, int] = {}

    def failures(self, monitor_id: int) -> int:
        return self._failures.get(monitor_id, 0)

    def tracked(self) -> Set[int]:
        """Monitor ids currently in a failure streak."""
        return set(self._failures)

    def prune(self, active_ids: Iterable[int]) -> None:
        """Drop streaks for monitors that are no longer active."""
        active = set(active_ids)
        for monitor_id in [m for m in self._failures if m not in active]:
            del self._failures[monitor_id]

    def reset(self) -> None:
        self._failures.clear()

    def record(self, monitor_id: int, is_up: bool, response_time_ms: int) -> List[Transition]:
        """Apply one check result and return the transitions it triggers.

        DOWN fires only on the check that crosses the threshold. RECOVERED
        fires on the first success after any failure, with a count of 1.
        SLOW fires on every up check slower than the slow threshold.
        """
        transitions: List[Transition] = []
        previous = self._failures.get(monitor_id, 0)

        if not is_up:
            count = previous + 1
            self._failures[monitor_id] = count
            if count == self.failure_threshold and previous < self.failure_threshold:
                transitions.append(Transition(AlertKind.DOWN, count, previous))
            return transitions

        if previous > 0:
            transitions.append(Transition(AlertKind.RECOVERED, 1, previous))
        self._failures.pop(monitor_id, None)

        if response_time_ms > self.slow_threshold_ms:
            transitions.append(Transition(AlertKind.SLOW, 1, previous))

        return transitions
