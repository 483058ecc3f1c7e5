"""Bounded-concurrency dispatch of one engine invocation per partition.

Two interchangeable strategies share launch, outcome classification and
record keeping:

* :class:`ExecutorDispatcher` hands the fan-out to a thread pool; each
  worker claims the next partition, launches it and supervises it to its
  terminal record.
* :class:`PoolDispatcher` keeps raw process handles in a slot table and
  reaps them from a single loop on a fixed poll interval.

Both dispatch in partition id order, keep at most ``concurrency``
invocations alive, launch every partition at most once and stop launching as
soon as the cancellation token is set.
"""
from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections import deque
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence

from .cancellation import CancellationToken
from .errors import DispatchError, InvocationFailure
from .invocation import InvocationSpec, build_invocation, launch, stop
from .logs import (
    EVT_CANCEL,
    EVT_DISPATCH,
    EVT_DISPATCH_FAILED,
    EVT_FORCED_CANCEL,
    EVT_REAP,
    EVT_TIMEOUT,
    OrchestratorLogger,
)
from .store import TaskStore
from .types import Partition, RunConfig, TaskState

LOGGER = logging.getLogger("fanout.dispatch")

DETAIL_CANCELLED = "cancelled"
DETAIL_FORCED = "forced-cancellation"
DETAIL_MISSING_ARTIFACT = "missing output artifact"


@dataclass(frozen=True, slots=True)
class InvocationOutcome:
    partition_id: str
    state: TaskState
    exit_code: Optional[int]
    detail: Optional[str] = None

    def failure(self) -> Optional[InvocationFailure]:
        if self.state is TaskState.COMPLETED:
            return None
        return InvocationFailure(f"Partition {self.partition_id}: {self.detail}")


def classify_outcome(
    spec: InvocationSpec,
    exit_code: Optional[int],
    *,
    timed_out: Optional[float] = None,
    cancelled: bool = False,
    confirmed_dead: bool = True,
) -> InvocationOutcome:
    """Map how an invocation ended onto a terminal task state."""

    pid = spec.partition_id
    if cancelled:
        detail = DETAIL_CANCELLED if confirmed_dead else DETAIL_FORCED
        return InvocationOutcome(pid, TaskState.FAILED, exit_code, detail)
    if timed_out is not None:
        detail = f"timeout after {timed_out:g}s"
        if not confirmed_dead:
            detail += " (process could not be killed)"
        return InvocationOutcome(pid, TaskState.FAILED, exit_code, detail)
    if exit_code != 0:
        return InvocationOutcome(pid, TaskState.FAILED, exit_code, f"exit code {exit_code}")
    if not spec.raw_output_path.exists():
        return InvocationOutcome(pid, TaskState.FAILED, exit_code, DETAIL_MISSING_ARTIFACT)
    return InvocationOutcome(pid, TaskState.COMPLETED, exit_code)


class BaseDispatcher:
    """Launch and record-keeping shared by the dispatch strategies."""

    strategy = "base"

    def __init__(
        self,
        config: RunConfig,
        store: TaskStore,
        *,
        token: CancellationToken,
        logger: Optional[OrchestratorLogger] = None,
        executable: Optional[str] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._token = token
        self._logger = logger
        self._executable = executable
        self._poll_s = max(0.01, float(config.poll_interval_s))
        self._timeout_s = config.invocation_timeout_s
        self._grace_s = float(config.cancel_grace_s)
        self._count_lock = threading.Lock()
        self._launched: List[str] = []
        self._in_flight = 0
        self._peak_in_flight = 0

    # ------------------------------------------------------------------
    @property
    def launched(self) -> List[str]:
        with self._count_lock:
            return list(self._launched)

    @property
    def peak_in_flight(self) -> int:
        with self._count_lock:
            return self._peak_in_flight

    def run(self, partitions: Sequence[Partition]) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    def _start(self, partition: Partition) -> Optional[tuple]:
        """Launch *partition* and mark it PROCESSING; return ``(spec, process)``.

        A launch failure is recorded as a FAILED task and returns ``None``.
        """

        spec = build_invocation(self._config, partition, executable=self._executable)
        paths = {"log_path": str(spec.log_path), "raw_output_path": str(spec.raw_output_path)}
        with self._count_lock:
            self._launched.append(partition.partition_id)
        try:
            process = launch(spec)
        except DispatchError as exc:
            LOGGER.error("Partition %s: %s", partition.partition_id, exc)
            if self._logger:
                self._logger.log_error(EVT_DISPATCH_FAILED, partition.partition_id, "dispatch", exc)
            self._store.transition(partition.partition_id, TaskState.PROCESSING, **paths)
            self._store.transition(partition.partition_id, TaskState.FAILED, f"launch failed: {exc}")
            return None
        try:
            self._store.transition(partition.partition_id, TaskState.PROCESSING, pid=process.pid, **paths)
        except Exception:
            stop(process, self._grace_s)
            raise
        with self._count_lock:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        if self._logger:
            self._logger.log_task(
                partition.partition_id,
                "dispatch",
                EVT_DISPATCH,
                True,
                pid=process.pid,
                strategy=self.strategy,
                argv=spec.argv,
            )
        LOGGER.info("Partition %s dispatched (pid %s)", partition.partition_id, process.pid)
        return spec, process

    def _finish(self, outcome: InvocationOutcome) -> None:
        with self._count_lock:
            self._in_flight -= 1
        self._store.transition(
            outcome.partition_id,
            outcome.state,
            outcome.detail,
            exit_code=outcome.exit_code,
        )
        failure = outcome.failure()
        if failure is None:
            LOGGER.info("Partition %s completed", outcome.partition_id)
        else:
            LOGGER.warning("%s", failure)
        if self._logger:
            if outcome.detail == DETAIL_FORCED:
                event_id = EVT_FORCED_CANCEL
            elif outcome.detail == DETAIL_CANCELLED:
                event_id = EVT_CANCEL
            elif outcome.detail and outcome.detail.startswith("timeout"):
                event_id = EVT_TIMEOUT
            else:
                event_id = EVT_REAP
            self._logger.log_task(
                outcome.partition_id,
                "reap",
                event_id,
                failure is None,
                exit_code=outcome.exit_code,
                detail=outcome.detail,
            )

    def _deadline(self) -> Optional[float]:
        if self._timeout_s is None:
            return None
        return time.monotonic() + self._timeout_s


class ExecutorDispatcher(BaseDispatcher):
    """Delegate the bounded fan-out to a :class:`ThreadPoolExecutor`."""

    strategy = "executor"

    def run(self, partitions: Sequence[Partition]) -> None:
        if not partitions:
            return
        backlog: Deque[Partition] = deque(partitions)
        claim_lock = threading.Lock()
        workers = min(max(1, int(self._config.concurrency)), len(backlog))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout-worker") as pool:
            pending = {pool.submit(self._work, backlog, claim_lock) for _ in range(workers)}
            while pending:
                done, pending = wait(pending, timeout=self._poll_s, return_when=FIRST_EXCEPTION)
                for future in done:
                    exc = future.exception()
                    if exc is not None:
                        # remaining workers see the token and wind down before the pool exits
                        self._token.set(f"worker error: {exc}")
                        raise exc

    def _work(self, backlog: Deque[Partition], claim_lock: threading.Lock) -> None:
        while True:
            # claim, launch and PROCESSING happen under one lock so launches follow id order
            with claim_lock:
                if self._token.is_set() or not backlog:
                    return
                started = self._start(backlog.popleft())
            if started is not None:
                self._supervise(*started)

    def _supervise(self, spec: InvocationSpec, process: subprocess.Popen) -> None:
        deadline = self._deadline()
        while True:
            try:
                exit_code = process.wait(timeout=self._poll_s)
                self._finish(classify_outcome(spec, exit_code))
                return
            except subprocess.TimeoutExpired:
                pass
            if self._token.is_set():
                exit_code = process.poll()
                if exit_code is not None:
                    self._finish(classify_outcome(spec, exit_code))
                    return
                gone = stop(process, self._grace_s)
                self._finish(classify_outcome(spec, process.poll(), cancelled=True, confirmed_dead=gone))
                return
            if deadline is not None and time.monotonic() >= deadline:
                gone = stop(process, self._grace_s)
                self._finish(
                    classify_outcome(spec, process.poll(), timed_out=self._timeout_s, confirmed_dead=gone)
                )
                return


@dataclass(slots=True)
class _Slot:
    spec: InvocationSpec
    process: subprocess.Popen
    deadline: Optional[float]


class PoolDispatcher(BaseDispatcher):
    """Manage the worker pool directly with a reap loop over process handles."""

    strategy = "pool"

    def run(self, partitions: Sequence[Partition]) -> None:
        queue: Deque[Partition] = deque(partitions)
        slots: Dict[str, _Slot] = {}
        limit = max(1, int(self._config.concurrency))
        try:
            while queue or slots:
                self._reap(slots)
                if self._token.is_set():
                    self._cancel_all(slots)
                    return
                while queue and len(slots) < limit:
                    partition = queue.popleft()
                    started = self._start(partition)
                    if started is not None:
                        spec, process = started
                        slots[partition.partition_id] = _Slot(spec, process, self._deadline())
                if queue or slots:
                    self._token.wait(self._poll_s)
        except BaseException:
            self._cancel_all(slots)
            raise

    def _reap(self, slots: Dict[str, _Slot]) -> None:
        now = time.monotonic()
        for partition_id in list(slots):
            slot = slots[partition_id]
            exit_code = slot.process.poll()
            if exit_code is not None:
                del slots[partition_id]
                self._finish(classify_outcome(slot.spec, exit_code))
            elif slot.deadline is not None and now >= slot.deadline:
                del slots[partition_id]
                gone = stop(slot.process, self._grace_s)
                self._finish(
                    classify_outcome(slot.spec, slot.process.poll(), timed_out=self._timeout_s, confirmed_dead=gone)
                )

    def _cancel_all(self, slots: Dict[str, _Slot]) -> None:
        for partition_id in list(slots):
            exit_code = slots[partition_id].process.poll()
            if exit_code is not None:
                # exited on its own before the signal reached it
                self._finish(classify_outcome(slots.pop(partition_id).spec, exit_code))
        if not slots:
            return
        LOGGER.warning("Terminating %s in-flight invocation(s)", len(slots))
        for slot in slots.values():
            try:
                slot.process.terminate()
            except OSError:
                pass
        # one shared grace period, then each survivor gets the kill escalation
        deadline = time.monotonic() + self._grace_s
        for partition_id in list(slots):
            slot = slots.pop(partition_id)
            remaining = max(0.0, deadline - time.monotonic())
            try:
                slot.process.wait(timeout=remaining)
                gone = True
            except subprocess.TimeoutExpired:
                gone = stop(slot.process, 0.0)
            self._finish(classify_outcome(slot.spec, slot.process.poll(), cancelled=True, confirmed_dead=gone))


DISPATCHERS = {
    ExecutorDispatcher.strategy: ExecutorDispatcher,
    PoolDispatcher.strategy: PoolDispatcher,
}


def build_dispatcher(
    config: RunConfig,
    store: TaskStore,
    *,
    token: CancellationToken,
    logger: Optional[OrchestratorLogger] = None,
    executable: Optional[str] = None,
) -> BaseDispatcher:
    try:
        factory = DISPATCHERS[config.strategy]
    except KeyError as exc:
        raise DispatchError(f"Unknown dispatch strategy '{config.strategy}'") from exc
    return factory(config, store, token=token, logger=logger, executable=executable)


__all__ = [
    "BaseDispatcher",
    "DETAIL_CANCELLED",
    "DETAIL_FORCED",
    "DETAIL_MISSING_ARTIFACT",
    "DISPATCHERS",
    "ExecutorDispatcher",
    "InvocationOutcome",
    "PoolDispatcher",
    "build_dispatcher",
    "classify_outcome",
]
