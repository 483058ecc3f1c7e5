"""Run-level scheduler: claim partitions, dispatch them and settle every record."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from core.paths import get_logs_dir, get_raw_dir, partition_label

from .cancellation import CancellationToken
from .dispatch import DETAIL_FORCED, BaseDispatcher, build_dispatcher
from .logs import EVT_FORCED_CANCEL, OrchestratorLogger
from .store import TaskStore
from .types import Partition, RunConfig, TaskState

LOGGER = logging.getLogger("fanout.scheduler")


@dataclass(slots=True)
class SchedulerResult:
    launched: List[str] = field(default_factory=list)
    not_dispatched: List[str] = field(default_factory=list)
    swept: List[str] = field(default_factory=list)
    peak_in_flight: int = 0
    cancelled: bool = False
    cancel_reason: Optional[str] = None


class Scheduler:
    """Dispatch every partition exactly once with at most ``concurrency`` in flight."""

    def __init__(
        self,
        config: RunConfig,
        store: TaskStore,
        *,
        token: Optional[CancellationToken] = None,
        logger: Optional[OrchestratorLogger] = None,
        executable: Optional[str] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._token = token or CancellationToken(grace_s=config.cancel_grace_s)
        self._logger = logger
        self._executable = executable
        self._dispatcher: Optional[BaseDispatcher] = None

    @property
    def token(self) -> CancellationToken:
        return self._token

    def cancel(self, reason: str = "cancelled") -> None:
        self._token.set(reason)

    # ------------------------------------------------------------------
    def prepare(self, partitions: Sequence[Partition]) -> None:
        """Create one PENDING record per partition before anything is launched."""

        root = self._config.output_root
        for partition in partitions:
            label = partition_label(partition.partition_id)
            self._store.create_pending(
                partition.partition_id,
                log_path=str(get_logs_dir(root) / f"{label}.log"),
                raw_output_path=str(get_raw_dir(root) / f"{label}.json"),
            )

    def run(self, partitions: Sequence[Partition]) -> SchedulerResult:
        ordered = sorted(partitions, key=lambda item: item.partition_id)
        self.prepare(ordered)
        dispatcher = build_dispatcher(
            self._config,
            self._store,
            token=self._token,
            logger=self._logger,
            executable=self._executable,
        )
        self._dispatcher = dispatcher
        LOGGER.info(
            "Dispatching %s partitions with %s (concurrency %s)",
            len(ordered),
            dispatcher.strategy,
            self._config.concurrency,
        )
        try:
            dispatcher.run(ordered)
        finally:
            swept = self._sweep_processing()
        tasks = self._store.read_all()
        result = SchedulerResult(
            launched=dispatcher.launched,
            not_dispatched=[pid for pid, task in tasks.items() if task.state is TaskState.PENDING],
            swept=swept,
            peak_in_flight=dispatcher.peak_in_flight,
            cancelled=self._token.is_set(),
            cancel_reason=self._token.reason,
        )
        if result.cancelled:
            LOGGER.warning(
                "Run cancelled (%s); %s partition(s) were never dispatched",
                result.cancel_reason,
                len(result.not_dispatched),
            )
        return result

    # ------------------------------------------------------------------
    def _sweep_processing(self) -> List[str]:
        """Fail anything the dispatcher left PROCESSING so no record outlives the run in limbo."""

        swept: List[str] = []
        for task in self._store.tasks_in(TaskState.PROCESSING):
            self._store.transition(task.partition_id, TaskState.FAILED, DETAIL_FORCED)
            swept.append(task.partition_id)
            if self._logger:
                self._logger.log_task(task.partition_id, "sweep", EVT_FORCED_CANCEL, False, pid=task.pid)
        if swept:
            LOGGER.error("Marked %s stranded partition(s) as %s", len(swept), DETAIL_FORCED)
        return swept


__all__ = ["Scheduler", "SchedulerResult"]
