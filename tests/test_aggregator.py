"""Tests for snapshot computation and the aggregator loop."""

from __future__ import annotations

import pytest

from orchestrator.aggregator import Aggregator, compute_snapshot
from orchestrator.store import TaskStore
from orchestrator.types import Task, TaskState

from conftest import wait_for


def _tasks(**counts: int):
    tasks = []
    index = 0
    for name, count in counts.items():
        for _ in range(count):
            tasks.append(Task(partition_id=f"{index:02d}", state=TaskState[name.upper()]))
            index += 1
    return tasks


class RecordingSink:
    def __init__(self) -> None:
        self.snapshots = []
        self.events = []
        self.closed = False

    def publish_snapshot(self, snapshot) -> None:
        self.snapshots.append(snapshot)

    def publish_event(self, event) -> None:
        self.events.append(event)

    def close(self) -> None:
        self.closed = True


class BrokenSink(RecordingSink):
    def publish_snapshot(self, snapshot) -> None:
        raise RuntimeError("renderer went away")


def test_empty_store_reports_indeterminate_values() -> None:
    snapshot = compute_snapshot([], elapsed_seconds=0.0)

    assert snapshot.total == 0
    assert snapshot.throughput_per_minute == 0.0
    assert snapshot.eta_minutes is None
    assert snapshot.progress_pct == 0.0


def test_counts_add_up_to_total() -> None:
    snapshot = compute_snapshot(
        _tasks(completed=4, failed=1, processing=2, pending=3),
        elapsed_seconds=120.0,
    )

    assert snapshot.total == 10
    assert snapshot.completed + snapshot.failed + snapshot.processing + snapshot.pending == snapshot.total
    assert snapshot.throughput_per_minute == pytest.approx(2.0)
    assert snapshot.eta_minutes == pytest.approx(3.0)
    assert snapshot.progress_pct == pytest.approx(50.0)


def test_unknown_records_are_counted_outside_total() -> None:
    snapshot = compute_snapshot(_tasks(completed=1, pending=1, unknown=2), elapsed_seconds=60.0)

    assert snapshot.unknown == 2
    assert snapshot.completed + snapshot.failed + snapshot.processing + snapshot.pending == snapshot.total
    assert snapshot.total == 2
    assert snapshot.partitions == 4
    assert snapshot.to_dict()["partitions"] == 4


def test_only_unknown_records_leave_eta_indeterminate() -> None:
    snapshot = compute_snapshot(_tasks(unknown=1), elapsed_seconds=60.0)

    assert snapshot.total == 0
    assert snapshot.eta_minutes is None


def test_eta_is_indeterminate_without_completions() -> None:
    snapshot = compute_snapshot(_tasks(processing=2, pending=5), elapsed_seconds=300.0)

    assert snapshot.throughput_per_minute == 0.0
    assert snapshot.eta_minutes is None


def test_eta_is_zero_once_nothing_is_outstanding() -> None:
    snapshot = compute_snapshot(_tasks(completed=2, failed=1), elapsed_seconds=30.0)

    assert snapshot.eta_minutes == 0.0


def test_tick_publishes_fresh_snapshots(tmp_path) -> None:
    store = TaskStore(tmp_path / "status")
    sink = RecordingSink()
    clock = iter([0.0, 30.0, 90.0]).__next__
    aggregator = Aggregator(store, interval_s=1.0, sinks=[sink], clock=clock)
    store.create_pending("00")
    store.transition("00", TaskState.PROCESSING)

    first = aggregator.tick()
    store.transition("00", TaskState.COMPLETED)
    second = aggregator.tick()

    assert first is not second
    assert (first.processing, second.completed) == (1, 1)
    assert second.elapsed_seconds == pytest.approx(90.0)
    assert aggregator.latest() is second
    assert sink.snapshots == [first, second]


def test_broken_sink_does_not_stop_aggregation(tmp_path) -> None:
    store = TaskStore(tmp_path / "status")
    store.create_pending("00")
    healthy = RecordingSink()
    aggregator = Aggregator(store, sinks=[BrokenSink(), healthy])

    snapshot = aggregator.tick()

    assert healthy.snapshots == [snapshot]


def test_loop_wakes_on_store_events(tmp_path) -> None:
    from orchestrator.events import EventChannel

    channel = EventChannel()
    store = TaskStore(tmp_path / "status", channel=channel)
    sink = RecordingSink()
    aggregator = Aggregator(store, interval_s=30.0, sinks=[sink])
    aggregator.start()
    try:
        store.create_pending("00")
        store.transition("00", TaskState.PROCESSING)
        assert wait_for(lambda: any(s.processing == 1 for s in sink.snapshots), timeout=5.0)
    finally:
        final = aggregator.stop()
    aggregator.close_sinks()

    assert final.processing == 1
    assert [e.state for e in sink.events] == [TaskState.PENDING, TaskState.PROCESSING]
    assert sink.closed
