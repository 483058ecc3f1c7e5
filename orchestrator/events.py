"""In-process fan-out of task lifecycle events to observers."""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from .types import TaskState

LOGGER = logging.getLogger("fanout.events")


@dataclass(frozen=True, slots=True)
class TaskEvent:
    """Single lifecycle transition notification."""

    seq: int
    partition_id: str
    previous: Optional[TaskState]
    state: TaskState
    ts_utc: str
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "seq": self.seq,
            "partition": self.partition_id,
            "previous": self.previous.value if self.previous else None,
            "state": self.state.value,
            "ts_utc": self.ts_utc,
            "detail": self.detail,
        }


class Subscription:
    """Bounded queue handed to one subscriber of an :class:`EventChannel`."""

    def __init__(self, channel: "EventChannel", sub_id: int, maxsize: int) -> None:
        self._channel = channel
        self.sub_id = sub_id
        self._queue: "queue.Queue[Optional[TaskEvent]]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: TaskEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # observers recompute from the store, a lost event only delays a refresh
            self.dropped += 1

    def get(self, timeout: Optional[float] = None) -> Optional[TaskEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[TaskEvent]:
        events: List[TaskEvent] = []
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return events
            if event is not None:
                events.append(event)

    def wake(self) -> None:
        """Unblock a pending :meth:`get`, which then returns ``None``."""

        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass

    def close(self) -> None:
        self._channel.unsubscribe(self)


class EventChannel:
    """Thread-safe publish/subscribe channel between the store and observers."""

    def __init__(self, *, queue_size: int = 1024) -> None:
        self._queue_size = max(1, int(queue_size))
        self._subscribers: Dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        self._seq = 0

    def next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    def subscribe(self) -> Subscription:
        with self._lock:
            sub = Subscription(self, self._next_id, self._queue_size)
            self._subscribers[sub.sub_id] = sub
            self._next_id += 1
        LOGGER.debug("events: subscriber %s registered", sub.sub_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(sub.sub_id, None)
        LOGGER.debug("events: subscriber %s removed", sub.sub_id)

    def publish(self, event: TaskEvent) -> None:
        with self._lock:
            targets = list(self._subscribers.values())
        for sub in targets:
            sub.offer(event)


__all__ = ["EventChannel", "Subscription", "TaskEvent"]
