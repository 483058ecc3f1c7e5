"""Durable per-partition status records.

Each partition owns one ``status/chunk_<id>.status`` file made of ``key: value``
lines. Every write goes to a temporary sibling which is then atomically
renamed over the record, so readers in this or any other process see either
the previous or the next version of a record and never a torn one.

Inside one process the store also keeps a mirror of the latest record for
every partition and publishes a :class:`~orchestrator.events.TaskEvent` per
write; observers use the mirror and the events while the files stay the
crash-recovery and cross-process view.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.atomic import atomic_write_text
from core.paths import partition_label

from .errors import AlreadyExists, InvalidTransition, StoreCorruption, UnknownTask
from .events import EventChannel, TaskEvent
from .logs import EVT_TASK_CORRUPT, EVT_TASK_CREATED, EVT_TASK_TRANSITION, OrchestratorLogger
from .types import ALLOWED_TRANSITIONS, Task, TaskState

LOGGER = logging.getLogger("fanout.store")

RECORD_SUFFIX = ".status"
_RECORD_KEYS = (
    "partition",
    "state",
    "created",
    "start_time",
    "end_time",
    "pid",
    "exit_code",
    "log_path",
    "raw_output_path",
    "error",
)
_INT_KEYS = {"pid", "exit_code"}
_UPDATABLE = {"pid", "exit_code", "log_path", "raw_output_path"}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_record(task: Task) -> str:
    lines = []
    for key in _RECORD_KEYS:
        if key == "partition":
            value: Any = task.partition_id
        elif key == "state":
            value = task.state.value
        else:
            value = getattr(task, key)
        text = "" if value is None else " ".join(str(value).splitlines())
        lines.append(f"{key}: {text}".rstrip())
    return "\n".join(lines) + "\n"


def parse_record(text: str) -> Task:
    """Parse a status record; raise :class:`StoreCorruption` when it is malformed."""

    values: Dict[str, Optional[str]] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        if not sep:
            raise StoreCorruption(f"line {lineno} is not a key/value pair")
        values[key.strip().lower()] = value.strip() or None

    partition = values.get("partition")
    state_text = values.get("state")
    if not partition or not state_text:
        raise StoreCorruption("record lacks partition or state")
    try:
        state = TaskState(state_text.upper())
    except ValueError as exc:
        raise StoreCorruption(f"unknown state '{state_text}'") from exc
    if state is TaskState.UNKNOWN:
        raise StoreCorruption("records never persist the UNKNOWN state")

    fields: Dict[str, Any] = {}
    for key in _RECORD_KEYS[2:]:
        raw = values.get(key)
        if raw is not None and key in _INT_KEYS:
            try:
                fields[key] = int(raw)
            except ValueError as exc:
                raise StoreCorruption(f"{key} is not an integer: {raw!r}") from exc
        else:
            fields[key] = raw
    return Task(partition_id=partition, state=state, **fields)


def partition_id_from_path(path: Path) -> str:
    stem = path.name[: -len(RECORD_SUFFIX)] if path.name.endswith(RECORD_SUFFIX) else path.stem
    return stem[len("chunk_"):] if stem.startswith("chunk_") else stem


def read_record(path: Path) -> Task:
    """Read one record from disk; unreadable or malformed records become UNKNOWN."""

    partition_id = partition_id_from_path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return Task(partition_id=partition_id, state=TaskState.UNKNOWN, error=f"unreadable status record: {exc}")
    try:
        task = parse_record(text)
    except StoreCorruption as exc:
        LOGGER.debug("corrupt status record %s: %s", path, exc)
        return Task(partition_id=partition_id, state=TaskState.UNKNOWN, error=f"corrupt status record: {exc}")
    if task.partition_id != partition_id:
        return Task(
            partition_id=partition_id,
            state=TaskState.UNKNOWN,
            error=f"record names partition '{task.partition_id}'",
        )
    return task


class TaskStore:
    """Mapping from partition id to :class:`Task`, backed by one file per partition.

    A writable store assumes it is the only writer of its directory; a
    read-only store (see :meth:`open_readonly`) always goes to disk.
    """

    def __init__(
        self,
        status_dir: Path,
        *,
        logger: Optional[OrchestratorLogger] = None,
        channel: Optional[EventChannel] = None,
        writable: bool = True,
    ) -> None:
        self._dir = Path(status_dir)
        self._logger = logger
        self._channel = channel
        self._writable = writable
        self._lock = threading.Lock()
        self._mirror: Dict[str, Task] = {}
        if writable:
            self._dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def open_readonly(cls, status_dir: Path) -> "TaskStore":
        return cls(status_dir, writable=False)

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def channel(self) -> Optional[EventChannel]:
        return self._channel

    def record_path(self, partition_id: str) -> Path:
        return self._dir / f"{partition_label(partition_id)}{RECORD_SUFFIX}"

    # ------------------------------------------------------------------
    def create_pending(
        self,
        partition_id: str,
        *,
        log_path: Optional[str] = None,
        raw_output_path: Optional[str] = None,
    ) -> Task:
        self._require_writable()
        path = self.record_path(partition_id)
        with self._lock:
            if partition_id in self._mirror or path.exists():
                raise AlreadyExists(f"Task for partition {partition_id} already exists")
            task = Task(
                partition_id=partition_id,
                state=TaskState.PENDING,
                created=_utcnow(),
                log_path=log_path,
                raw_output_path=raw_output_path,
            )
            atomic_write_text(path, format_record(task))
            self._mirror[partition_id] = task
        if self._logger:
            self._logger.log_task(partition_id, "store", EVT_TASK_CREATED, True, state=task.state.value)
        self._publish(task, None, None)
        return task

    def transition(
        self,
        partition_id: str,
        new_state: TaskState,
        detail: Optional[str] = None,
        **fields: Any,
    ) -> Task:
        """Move *partition_id* to *new_state*, enforcing the lifecycle edges."""

        self._require_writable()
        new_state = TaskState(new_state)
        unexpected = set(fields) - _UPDATABLE
        if unexpected:
            raise TypeError(f"Unsupported task fields: {sorted(unexpected)}")
        if new_state is TaskState.FAILED and not detail:
            raise InvalidTransition(f"Partition {partition_id}: failures must carry an error detail")
        with self._lock:
            current = self._mirror.get(partition_id)
            if current is None:
                current = self._load_from_disk(partition_id)
            if new_state not in ALLOWED_TRANSITIONS[current.state]:
                raise InvalidTransition(
                    f"Partition {partition_id}: {current.state.value} -> {new_state.value} is not allowed"
                )
            now = _utcnow()
            changes: Dict[str, Any] = dict(fields)
            changes["state"] = new_state
            if new_state is TaskState.PROCESSING:
                changes["start_time"] = now
            if new_state.terminal:
                changes["end_time"] = now
                if detail:
                    changes["error"] = detail
            task = dataclasses.replace(current, **changes)
            atomic_write_text(self.record_path(partition_id), format_record(task))
            self._mirror[partition_id] = task
        if self._logger:
            self._logger.log_task(
                partition_id,
                "store",
                EVT_TASK_TRANSITION,
                new_state is not TaskState.FAILED,
                previous=current.state.value,
                state=new_state.value,
                detail=detail,
            )
        self._publish(task, current.state, detail)
        return task

    # ------------------------------------------------------------------
    def get(self, partition_id: str) -> Task:
        if self._writable:
            with self._lock:
                task = self._mirror.get(partition_id)
            if task is not None:
                return task
        path = self.record_path(partition_id)
        if not path.exists():
            raise UnknownTask(f"No task recorded for partition {partition_id}")
        return read_record(path)

    def read_all(self, *, from_disk: bool = False) -> Dict[str, Task]:
        """Return the latest record of every known partition, keyed by id.

        Each record is individually consistent; the set as a whole is not a
        transactional snapshot.
        """

        if self._writable and not from_disk:
            with self._lock:
                return dict(sorted(self._mirror.items()))
        tasks: Dict[str, Task] = {}
        for path in sorted(self._dir.glob(f"*{RECORD_SUFFIX}")):
            task = read_record(path)
            if task.state is TaskState.UNKNOWN and self._logger:
                self._logger.log_task(task.partition_id, "store", EVT_TASK_CORRUPT, False, detail=task.error)
            tasks[task.partition_id] = task
        return tasks

    def tasks_in(self, state: TaskState) -> List[Task]:
        return [task for task in self.read_all().values() if task.state is state]

    # ------------------------------------------------------------------
    def _load_from_disk(self, partition_id: str) -> Task:
        path = self.record_path(partition_id)
        if not path.exists():
            raise UnknownTask(f"No task recorded for partition {partition_id}")
        task = read_record(path)
        if task.state is TaskState.UNKNOWN:
            raise InvalidTransition(f"Partition {partition_id}: record is unreadable ({task.error})")
        return task

    def _require_writable(self) -> None:
        if not self._writable:
            raise PermissionError(f"Task store at {self._dir} was opened read-only")

    def _publish(self, task: Task, previous: Optional[TaskState], detail: Optional[str]) -> None:
        if self._channel is None:
            return
        self._channel.publish(
            TaskEvent(
                seq=self._channel.next_seq(),
                partition_id=task.partition_id,
                previous=previous,
                state=task.state,
                ts_utc=_utcnow(),
                detail=detail,
            )
        )


__all__ = [
    "RECORD_SUFFIX",
    "TaskStore",
    "format_record",
    "parse_record",
    "read_record",
]
