"""Common dataclasses shared across orchestrator modules."""
from __future__ import annotations

import shutil
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import ConfigurationError

FUZZ_KEYWORD = "FUZZ"
HOST_KEYWORD = "HOST"
DISPATCH_STRATEGIES = ("executor", "pool")


class TaskState(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


# Legal lifecycle edges; terminal states have none.
ALLOWED_TRANSITIONS: Dict[TaskState, Tuple[TaskState, ...]] = {
    TaskState.PENDING: (TaskState.PROCESSING,),
    TaskState.PROCESSING: (TaskState.COMPLETED, TaskState.FAILED),
    TaskState.COMPLETED: (),
    TaskState.FAILED: (),
    TaskState.UNKNOWN: (),
}


@dataclass(frozen=True, slots=True)
class Partition:
    """Contiguous slice of the source list, persisted as one chunk file."""

    partition_id: str
    source_path: Path
    item_count: int
    first_index: int

    def items(self) -> Iterator[str]:
        with open(self.source_path, "r", encoding="utf-8", errors="surrogateescape", newline="") as handle:
            for line in handle:
                yield line[:-1] if line.endswith("\n") else line


@dataclass(frozen=True, slots=True)
class Task:
    """Point-in-time lifecycle record for one partition."""

    partition_id: str
    state: TaskState
    created: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    pid: Optional[int] = None
    exit_code: Optional[int] = None
    log_path: Optional[str] = None
    raw_output_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.terminal

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        return payload


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    total: int = 0
    completed: int = 0
    failed: int = 0
    processing: int = 0
    pending: int = 0
    unknown: int = 0
    elapsed_seconds: float = 0.0
    throughput_per_minute: float = 0.0
    eta_minutes: Optional[float] = None
    taken_utc: Optional[str] = None

    @property
    def partitions(self) -> int:
        """Every status record, readable or not."""

        return self.total + self.unknown

    @property
    def progress_pct(self) -> float:
        if self.total <= 0:
            return 0.0
        return 100.0 * (self.completed + self.failed) / self.total

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["partitions"] = self.partitions
        payload["progress_pct"] = round(self.progress_pct, 2)
        return payload


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Immutable run configuration resolved from settings and CLI flags."""

    source: Path
    output_root: Path
    partition_size: int = 10000
    concurrency: int = 5
    invocation_threads: int = 30
    target_path: str = "/.DS_Store"
    scheme: str = "https"
    wordlist: Optional[Path] = None
    engine_command: Tuple[str, ...] = ("ffuf",)
    extra_args: Tuple[str, ...] = ()
    strategy: str = "executor"
    poll_interval_s: float = 0.5
    invocation_timeout_s: Optional[float] = None
    cancel_grace_s: float = 5.0
    dashboard_enabled: bool = True
    refresh_interval_s: float = 2.0
    api_host: str = "127.0.0.1"
    api_port: Optional[int] = None
    prettify: bool = True
    cleanup_empty: bool = True
    verbose: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: Mapping[str, Any],
        *,
        source: Path,
        output_root: Path,
        **overrides: Any,
    ) -> "RunConfig":
        from core.settings_schema import SETTINGS_VALIDATOR

        issues = list(SETTINGS_VALIDATOR.type_issues(settings))
        if issues:
            detail = ", ".join(f"{key} (expected {expected})" for key, expected in issues)
            raise ConfigurationError(f"Invalid settings values: {detail}")

        partition = settings.get("partition") if isinstance(settings.get("partition"), dict) else {}
        dispatch = settings.get("dispatch") if isinstance(settings.get("dispatch"), dict) else {}
        engine = settings.get("engine") if isinstance(settings.get("engine"), dict) else {}
        dashboard = settings.get("dashboard") if isinstance(settings.get("dashboard"), dict) else {}
        output = settings.get("output") if isinstance(settings.get("output"), dict) else {}

        command = engine.get("command", ["ffuf"])
        if isinstance(command, str):
            command = [command]
        timeout = dispatch.get("invocation_timeout_s")
        dashboard_enabled = dashboard.get("enabled")
        if dashboard_enabled is None:
            dashboard_enabled = tmux_available()

        values: Dict[str, Any] = {
            "source": Path(source),
            "output_root": Path(output_root),
            "partition_size": int(partition.get("size", 10000)),
            "concurrency": int(dispatch.get("concurrency", 5)),
            "invocation_threads": int(engine.get("threads", 30)),
            "target_path": str(engine.get("target_path", "/.DS_Store")),
            "scheme": str(engine.get("scheme", "https")),
            "engine_command": tuple(str(part) for part in command),
            "extra_args": tuple(str(arg) for arg in engine.get("extra_args") or ()),
            "strategy": str(dispatch.get("strategy", "executor")),
            "poll_interval_s": float(dispatch.get("poll_ms", 500)) / 1000.0,
            "invocation_timeout_s": float(timeout) if timeout else None,
            "cancel_grace_s": float(dispatch.get("cancel_grace_s", 5)),
            "dashboard_enabled": bool(dashboard_enabled),
            "refresh_interval_s": float(dashboard.get("refresh_s", 2)),
            "api_host": str(dashboard.get("api_host") or "127.0.0.1"),
            "api_port": dashboard.get("api_port"),
            "prettify": bool(output.get("prettify", True)),
            "cleanup_empty": bool(output.get("cleanup_empty", True)),
        }
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in cls.__dataclass_fields__:
                raise ConfigurationError(f"Unknown configuration field: {key}")
            values[key] = value
        if values.get("wordlist") is not None:
            values["wordlist"] = Path(values["wordlist"])
        if isinstance(values.get("engine_command"), str):
            values["engine_command"] = (values["engine_command"],)
        if values.get("invocation_timeout_s") is not None and float(values["invocation_timeout_s"]) <= 0:
            values["invocation_timeout_s"] = None
        return cls(**values)

    def validate(self) -> "RunConfig":
        problems: List[str] = []
        if not str(self.source).strip():
            problems.append("source file is required")
        elif not self.source.is_file():
            problems.append(f"source file '{self.source}' does not exist")
        if not str(self.output_root).strip():
            problems.append("output directory is required")
        if self.partition_size <= 0:
            problems.append("partition size must be positive")
        if self.concurrency <= 0:
            problems.append("concurrency must be positive")
        if self.invocation_threads <= 0:
            problems.append("invocation threads must be positive")
        if self.refresh_interval_s <= 0:
            problems.append("refresh interval must be positive")
        if self.poll_interval_s <= 0:
            problems.append("poll interval must be positive")
        if self.cancel_grace_s < 0:
            problems.append("cancel grace period cannot be negative")
        if self.strategy not in DISPATCH_STRATEGIES:
            problems.append(f"unknown dispatch strategy '{self.strategy}'")
        if not self.engine_command or not self.engine_command[0].strip():
            problems.append("engine command is empty")
        if self.wordlist is not None:
            if not self.wordlist.is_file():
                problems.append(f"wordlist '{self.wordlist}' is not a readable file")
            if FUZZ_KEYWORD not in self.target_path:
                problems.append(f"target path must contain {FUZZ_KEYWORD} when a wordlist is used")
        if self.api_port is not None and not (0 < int(self.api_port) < 65536):
            problems.append("api port out of range")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

    @property
    def wordlist_mode(self) -> bool:
        return self.wordlist is not None

    def report_fields(self) -> Dict[str, Any]:
        return {
            "source": str(self.source),
            "output_root": str(self.output_root),
            "partition_size": self.partition_size,
            "concurrency": self.concurrency,
            "invocation_threads": self.invocation_threads,
            "target_path": self.target_path,
            "wordlist": str(self.wordlist) if self.wordlist else None,
            "strategy": self.strategy,
            "invocation_timeout_s": self.invocation_timeout_s,
        }


@dataclass(frozen=True, slots=True)
class FailedPartition:
    partition_id: str
    error: Optional[str]


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Final, immutable outcome of one run."""

    config: Dict[str, Any]
    source_items: int
    snapshot: RunSnapshot
    failed: Tuple[FailedPartition, ...] = ()
    not_dispatched: Tuple[str, ...] = ()
    unknown: Tuple[str, ...] = ()
    cancelled: bool = False
    finished_utc: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def success_rate_pct(self) -> float:
        if self.snapshot.total <= 0:
            return 0.0
        return 100.0 * self.snapshot.completed / self.snapshot.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": dict(self.config),
            "source_items": self.source_items,
            "totals": {
                "total": self.snapshot.total,
                "completed": self.snapshot.completed,
                "failed": self.snapshot.failed,
                "processing": self.snapshot.processing,
                "pending": self.snapshot.pending,
                "unknown": self.snapshot.unknown,
            },
            "elapsed_seconds": round(self.snapshot.elapsed_seconds, 3),
            "throughput_per_minute": round(self.snapshot.throughput_per_minute, 3),
            "success_rate_pct": round(self.success_rate_pct, 2),
            "failed_partitions": [
                {"partition": item.partition_id, "error": item.error} for item in self.failed
            ],
            "not_dispatched": list(self.not_dispatched),
            "unknown": list(self.unknown),
            "cancelled": self.cancelled,
            "finished_utc": self.finished_utc,
            **({"extras": dict(self.extras)} if self.extras else {}),
        }


def tmux_available() -> bool:
    """Return True when a terminal multiplexer is on PATH."""

    return shutil.which("tmux") is not None


__all__ = [
    "ALLOWED_TRANSITIONS",
    "DISPATCH_STRATEGIES",
    "FUZZ_KEYWORD",
    "FailedPartition",
    "HOST_KEYWORD",
    "Partition",
    "RunConfig",
    "RunSnapshot",
    "RunSummary",
    "Task",
    "TaskState",
    "tmux_available",
]
