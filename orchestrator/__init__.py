"""Partitioned fan-out of scan-engine jobs with crash-safe status tracking."""

from .run import RunResult, run_fanout
from .scheduler import Scheduler, SchedulerResult
from .store import TaskStore
from .types import RunConfig, RunSnapshot, RunSummary, Task, TaskState

__all__ = [
    "RunConfig",
    "RunResult",
    "RunSnapshot",
    "RunSummary",
    "Scheduler",
    "SchedulerResult",
    "Task",
    "TaskState",
    "TaskStore",
    "run_fanout",
]
