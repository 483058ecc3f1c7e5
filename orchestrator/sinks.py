"""Dashboard sinks: consumers of snapshots and task events."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from core.atomic import atomic_write_json
from core.paths import get_dashboard_dir

from .events import TaskEvent
from .types import RunSnapshot, TaskState

LOGGER = logging.getLogger("fanout.sinks")


class DashboardSink(Protocol):
    def publish_snapshot(self, snapshot: RunSnapshot) -> None: ...

    def publish_event(self, event: TaskEvent) -> None: ...

    def close(self) -> None: ...


class SnapshotFileSink:
    """Keep ``dashboard/`` current for an external renderer (tmux pane, watch, ...)."""

    def __init__(self, output_root: Path, *, info: Optional[Dict[str, Any]] = None) -> None:
        self._dir = get_dashboard_dir(Path(output_root))
        self._dir.mkdir(parents=True, exist_ok=True)
        self._events_path = self._dir / "events.jsonl"
        self._lock = threading.Lock()
        if info is not None:
            atomic_write_json(self._dir / "info.json", info)
        LOGGER.debug("Dashboard files under %s", self._dir)

    @property
    def snapshot_path(self) -> Path:
        return self._dir / "snapshot.json"

    @property
    def events_path(self) -> Path:
        return self._events_path

    def publish_snapshot(self, snapshot: RunSnapshot) -> None:
        atomic_write_json(self.snapshot_path, snapshot.to_dict(), fsync=False)

    def publish_event(self, event: TaskEvent) -> None:
        line = json.dumps(event.to_dict(), sort_keys=True)
        with self._lock:
            with self._events_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def close(self) -> None:
        pass


class ConsoleSink:
    """Log one progress line per snapshot."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("fanout.progress")
        self._last: Optional[tuple] = None

    def publish_snapshot(self, snapshot: RunSnapshot) -> None:
        key = (snapshot.completed, snapshot.failed, snapshot.processing, snapshot.pending, snapshot.unknown)
        if key == self._last:
            return
        self._last = key
        eta = "?" if snapshot.eta_minutes is None else f"{snapshot.eta_minutes:.1f}m"
        self._logger.info(
            "Progress %.1f%%: %s done, %s failed, %s running, %s pending | %.2f/min | ETA %s",
            snapshot.progress_pct,
            snapshot.completed,
            snapshot.failed,
            snapshot.processing,
            snapshot.pending,
            snapshot.throughput_per_minute,
            eta,
        )

    def publish_event(self, event: TaskEvent) -> None:
        if event.state is TaskState.FAILED:
            self._logger.warning("Partition %s failed: %s", event.partition_id, event.detail)

    def close(self) -> None:
        self._last = None


__all__ = ["ConsoleSink", "DashboardSink", "SnapshotFileSink"]
