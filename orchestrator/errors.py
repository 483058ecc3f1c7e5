"""Error hierarchy for the partition fan-out engine."""
from __future__ import annotations


class FanoutError(RuntimeError):
    """Base exception for fan-out related failures."""


class ConfigurationError(FanoutError):
    """Bad or missing run configuration; aborts before any dispatch."""


class PartitionError(FanoutError):
    """The source list could not be split into partitions."""


class InvalidInput(PartitionError):
    """Empty or unreadable source, or a non-positive partition size."""


class DispatchError(FanoutError):
    """The scan engine could not be launched for a partition."""


class InvocationFailure(FanoutError):
    """The scan engine exited non-zero or timed out."""


class StoreCorruption(FanoutError):
    """A status record could not be parsed."""


class TaskStoreError(FanoutError):
    """Base class for task store contract violations."""


class AlreadyExists(TaskStoreError):
    """A pending record was created twice for the same partition."""


class InvalidTransition(TaskStoreError):
    """The requested state change is not allowed by the task lifecycle."""


class UnknownTask(TaskStoreError):
    """No record exists for the requested partition."""


__all__ = [
    "AlreadyExists",
    "ConfigurationError",
    "DispatchError",
    "FanoutError",
    "InvalidInput",
    "InvalidTransition",
    "InvocationFailure",
    "PartitionError",
    "StoreCorruption",
    "TaskStoreError",
    "UnknownTask",
]
