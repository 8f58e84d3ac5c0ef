"""Run the invocation's probes concurrently and join them against one deadline.

Each probe runs in its own daemon thread and writes only to its own slot.
A slot's contents are copied into a ProbeResult only if the probe finished
before the deadline; late probes are abandoned, not killed, and their slots
are never read again. Daemon threads do not hold up interpreter exit, so an
abandoned probe cannot delay the prompt.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TypeAlias

from pursue.shared.models import FetchCacheEntry, ProbeKind, ProbeResult, VcsState

logger = logging.getLogger(__name__)

ProbePayload: TypeAlias = VcsState | FetchCacheEntry | None
ProbeTask: TypeAlias = Callable[[], ProbePayload]


@dataclass
class _ProbeSlot:
    """Thread-local output buffer for one probe."""

    kind: ProbeKind
    task: ProbeTask
    done: threading.Event = field(default_factory=threading.Event)
    payload: ProbePayload = None
    error: str | None = None
    started_at: float = 0.0
    finished_at: float = 0.0

    def run(self) -> None:
        self.started_at = time.perf_counter()
        try:
            self.payload = self.task()
        except Exception as e:
            logger.debug("Probe %s failed", self.kind, exc_info=True)
            self.error = f"{type(e).__name__}: {e}"
        finally:
            self.finished_at = time.perf_counter()
            self.done.set()

    def to_result(self) -> ProbeResult:
        return ProbeResult(
            kind=self.kind,
            payload=self.payload if self.error is None else None,
            completed=self.error is None,
            duration=timedelta(seconds=self.finished_at - self.started_at),
            error=self.error,
        )


@dataclass(frozen=True)
class ScheduleOutcome:
    """Probes that finished before the deadline, plus the ones that did not."""

    results: dict[ProbeKind, ProbeResult]
    timed_out: frozenset[ProbeKind]

    def get(self, kind: ProbeKind) -> ProbeResult | None:
        return self.results.get(kind)

    @property
    def partial(self) -> bool:
        return bool(self.timed_out) or any(not r.completed for r in self.results.values())


class RunningProbes:
    """Probes launched by DeadlineScheduler.launch(), not yet joined."""

    def __init__(self, slots: list[_ProbeSlot], deadline_at: float):
        self._slots = slots
        self._deadline_at = deadline_at

    def remaining(self) -> float:
        return max(0.0, self._deadline_at - time.monotonic())

    def join(self) -> ScheduleOutcome:
        """Wait until every probe is done or the deadline passes, whichever is first."""
        for slot in self._slots:
            slot.done.wait(self.remaining())

        results: dict[ProbeKind, ProbeResult] = {}
        timed_out: set[ProbeKind] = set()
        for slot in self._slots:
            if slot.done.is_set():
                results[slot.kind] = slot.to_result()
            else:
                timed_out.add(slot.kind)
        if timed_out:
            logger.debug("Probes missed the deadline: %s", sorted(timed_out))
        return ScheduleOutcome(results=results, timed_out=frozenset(timed_out))


class DeadlineScheduler:
    def launch(self, tasks: Mapping[ProbeKind, ProbeTask], deadline: timedelta) -> RunningProbes:
        """Start every task in its own daemon thread; returns without waiting.

        A zero (or negative) deadline starts nothing: every task counts as
        timed out.
        """
        budget = deadline.total_seconds()
        slots = [_ProbeSlot(kind=kind, task=task) for kind, task in tasks.items()]
        deadline_at = time.monotonic() + max(budget, 0.0)
        if budget <= 0:
            return RunningProbes(slots, deadline_at)

        for slot in slots:
            threading.Thread(target=slot.run, name=f"probe-{slot.kind}", daemon=True).start()
        return RunningProbes(slots, deadline_at)

    def run(self, tasks: Mapping[ProbeKind, ProbeTask], deadline: timedelta) -> ScheduleOutcome:
        return self.launch(tasks, deadline).join()
