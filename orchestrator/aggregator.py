"""Run-level progress snapshots computed from the task store."""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from .events import Subscription, TaskEvent
from .store import TaskStore
from .types import RunSnapshot, Task, TaskState

LOGGER = logging.getLogger("fanout.aggregator")

# Event bursts are folded into one recomputation at most this often.
_MIN_REFRESH_GAP_S = 0.25


def compute_snapshot(
    tasks: Iterable[Task],
    *,
    elapsed_seconds: float,
    taken_utc: Optional[str] = None,
) -> RunSnapshot:
    """Fold task records into a :class:`RunSnapshot`.

    Throughput is completions per minute since run start; the ETA is
    indeterminate (``None``) until something has completed and drops to zero
    once nothing is pending or processing.

    ``total`` covers the four lifecycle states only; UNKNOWN records are
    counted in ``unknown``.
    """

    counts = {state: 0 for state in TaskState}
    for task in tasks:
        counts[task.state] += 1
    total = sum(count for state, count in counts.items() if state is not TaskState.UNKNOWN)
    completed = counts[TaskState.COMPLETED]
    elapsed = max(0.0, float(elapsed_seconds))
    throughput = completed / (elapsed / 60.0) if elapsed > 0 and completed else 0.0
    outstanding = counts[TaskState.PENDING] + counts[TaskState.PROCESSING]
    if total and outstanding == 0:
        eta: Optional[float] = 0.0
    elif throughput > 0:
        eta = (total - completed) / throughput
    else:
        eta = None
    return RunSnapshot(
        total=total,
        completed=completed,
        failed=counts[TaskState.FAILED],
        processing=counts[TaskState.PROCESSING],
        pending=counts[TaskState.PENDING],
        unknown=counts[TaskState.UNKNOWN],
        elapsed_seconds=elapsed,
        throughput_per_minute=throughput,
        eta_minutes=eta,
        taken_utc=taken_utc or datetime.now(timezone.utc).isoformat(),
    )


class Aggregator:
    """Recompute snapshots on every refresh interval or store event and publish them to sinks.

    The aggregator only reads the store. Each snapshot is a new frozen value
    so :meth:`latest` can be called from any thread without locking.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        interval_s: float = 2.0,
        sinks: Sequence[object] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._interval = max(0.05, float(interval_s))
        self._sinks: List[object] = list(sinks)
        self._clock = clock
        self._started = clock()
        self._latest = compute_snapshot((), elapsed_seconds=0.0)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._subscription: Optional[Subscription] = None

    # ------------------------------------------------------------------
    def latest(self) -> RunSnapshot:
        return self._latest

    def elapsed(self) -> float:
        return self._clock() - self._started

    def add_sink(self, sink: object) -> None:
        self._sinks.append(sink)

    def tick(self) -> RunSnapshot:
        try:
            tasks = self._store.read_all().values()
        except OSError as exc:
            LOGGER.warning("Aggregator could not read task records: %s", exc)
            return self._latest
        snapshot = compute_snapshot(tasks, elapsed_seconds=self.elapsed())
        self._latest = snapshot
        for sink in self._sinks:
            try:
                sink.publish_snapshot(snapshot)
            except Exception as exc:  # sinks are external collaborators
                LOGGER.warning("Dashboard sink %s failed: %s", type(sink).__name__, exc)
        return snapshot

    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        channel = self._store.channel
        self._subscription = channel.subscribe() if channel is not None else None
        self._started = self._clock()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="fanout-aggregator", daemon=True)
        self._thread.start()

    def stop(self) -> RunSnapshot:
        """Stop the loop, flush pending events and publish one final snapshot."""

        self._stop_event.set()
        if self._subscription is not None:
            self._subscription.wake()
        thread = self._thread
        if thread:
            thread.join(timeout=max(2.0, self._interval * 2))
        self._thread = None
        if self._subscription is not None:
            self._forward(self._subscription.drain())
            self._subscription.close()
            self._subscription = None
        return self.tick()

    def close_sinks(self) -> None:
        for sink in self._sinks:
            try:
                sink.close()
            except Exception as exc:
                LOGGER.warning("Dashboard sink %s failed to close: %s", type(sink).__name__, exc)

    # ------------------------------------------------------------------
    def _run_loop(self) -> None:
        last_tick = 0.0
        while not self._stop_event.is_set():
            if self._subscription is None:
                self._stop_event.wait(self._interval)
                events: List[TaskEvent] = []
            else:
                first = self._subscription.get(timeout=self._interval)
                events = ([first] if first is not None else []) + self._subscription.drain()
            self._forward(events)
            now = self._clock()
            if events and now - last_tick < _MIN_REFRESH_GAP_S:
                self._stop_event.wait(_MIN_REFRESH_GAP_S - (now - last_tick))
                self._forward(self._subscription.drain() if self._subscription else [])
            self.tick()
            last_tick = self._clock()

    def _forward(self, events: List[TaskEvent]) -> None:
        if not events:
            return
        for sink in self._sinks:
            for event in events:
                try:
                    sink.publish_event(event)
                except Exception as exc:
                    LOGGER.warning("Dashboard sink %s rejected event: %s", type(sink).__name__, exc)
                    break


__all__ = ["Aggregator", "compute_snapshot"]
