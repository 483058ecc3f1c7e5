"""Final run summary and output-tree cleanup."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from core.atomic import atomic_write_json, atomic_write_text
from core.paths import (
    get_dashboard_dir,
    get_logs_dir,
    get_pretty_dir,
    get_raw_dir,
    get_summary_dir,
)

from .aggregator import compute_snapshot
from .types import FailedPartition, RunConfig, RunSummary, Task, TaskState

LOGGER = logging.getLogger("fanout.reporter")

REPORT_TXT = "final_report.txt"
REPORT_JSON = "final_report.json"
_CLEANUP_SUFFIXES = (".json", ".log")


def build_summary(
    config: RunConfig,
    tasks: Mapping[str, Task] | Iterable[Task],
    *,
    source_items: int,
    elapsed_seconds: float,
    cancelled: bool = False,
    extras: Optional[Dict[str, Any]] = None,
) -> RunSummary:
    """Combine the task records with the run configuration into a :class:`RunSummary`."""

    records = list(tasks.values()) if isinstance(tasks, Mapping) else list(tasks)
    records.sort(key=lambda task: task.partition_id)
    snapshot = compute_snapshot(records, elapsed_seconds=elapsed_seconds)
    failed = tuple(
        FailedPartition(task.partition_id, task.error) for task in records if task.state is TaskState.FAILED
    )
    not_dispatched = tuple(task.partition_id for task in records if task.state is TaskState.PENDING)
    unknown = tuple(task.partition_id for task in records if task.state is TaskState.UNKNOWN)
    return RunSummary(
        config=config.report_fields(),
        source_items=int(source_items),
        snapshot=snapshot,
        failed=failed,
        not_dispatched=not_dispatched,
        unknown=unknown,
        cancelled=cancelled,
        finished_utc=datetime.now(timezone.utc).isoformat(),
        extras=dict(extras or {}),
    )


def render_text(summary: RunSummary, output_root: Path) -> str:
    snap = summary.snapshot
    cfg = summary.config
    lines: List[str] = [
        "FFUF FAN-OUT - FINAL REPORT",
        "===========================",
        f"Completion Time: {summary.finished_utc}",
        f"Total Processing Time: {snap.elapsed_seconds:.0f}s",
        f"Status: {'CANCELLED' if summary.cancelled else 'FINISHED'}",
        "",
        "STATISTICS:",
        f"- Source Items: {summary.source_items}",
        f"- Total Partitions: {snap.partitions}",
        f"- Completed: {snap.completed}",
        f"- Failed: {snap.failed}",
        f"- Never Dispatched: {len(summary.not_dispatched)}",
        f"- Unknown: {snap.unknown}",
        f"- Success Rate: {summary.success_rate_pct:.0f}%",
        f"- Throughput: {snap.throughput_per_minute:.2f} partitions/min",
        "",
        "CONFIGURATION:",
        f"- Source File: {cfg.get('source')}",
        f"- Output Directory: {cfg.get('output_root')}",
        f"- Partition Size: {cfg.get('partition_size')}",
        f"- Target Path: {cfg.get('target_path')}",
        f"- Wordlist: {cfg.get('wordlist') or '-'}",
        f"- Parallel Jobs: {cfg.get('concurrency')}",
        f"- Engine Threads: {cfg.get('invocation_threads')}",
        f"- Dispatch Strategy: {cfg.get('strategy')}",
    ]
    if summary.failed:
        lines += ["", "FAILED PARTITIONS:"]
        lines += [f"- {item.partition_id}: {item.error or 'unknown error'}" for item in summary.failed]
    if summary.not_dispatched:
        lines += ["", "NOT DISPATCHED:", "- " + ", ".join(summary.not_dispatched)]
    if summary.unknown:
        lines += ["", "UNREADABLE STATUS RECORDS:", "- " + ", ".join(summary.unknown)]
    lines += [
        "",
        "RESULTS LOCATION:",
        f"- Raw Results: {get_raw_dir(output_root)}/",
        f"- Prettified Results: {get_pretty_dir(output_root)}/",
        f"- Logs: {get_logs_dir(output_root)}/",
        f"- Dashboard Info: {get_dashboard_dir(output_root)}/",
    ]
    return "\n".join(lines) + "\n"


def write_report(summary: RunSummary, output_root: Path) -> Tuple[Path, Path]:
    """Write the human-readable and JSON forms of *summary* under ``summary/``."""

    summary_dir = get_summary_dir(Path(output_root))
    summary_dir.mkdir(parents=True, exist_ok=True)
    txt_path = summary_dir / REPORT_TXT
    json_path = summary_dir / REPORT_JSON
    atomic_write_text(txt_path, render_text(summary, Path(output_root)))
    atomic_write_json(json_path, summary.to_dict())
    LOGGER.info("Final report written to %s", txt_path)
    return txt_path, json_path


def cleanup_output(output_root: Path) -> int:
    """Remove empty ``.json``/``.log`` artifacts; return how many were deleted."""

    removed = 0
    for directory in (get_raw_dir(output_root), get_pretty_dir(output_root), get_logs_dir(output_root)):
        if not directory.is_dir():
            continue
        for path in directory.iterdir():
            if path.suffix not in _CLEANUP_SUFFIXES or not path.is_file():
                continue
            try:
                if path.stat().st_size == 0:
                    path.unlink()
                    removed += 1
            except OSError as exc:
                LOGGER.warning("Could not remove empty file %s: %s", path, exc)
    if removed:
        LOGGER.debug("Removed %s empty output files", removed)
    return removed


__all__ = [
    "REPORT_JSON",
    "REPORT_TXT",
    "build_summary",
    "cleanup_output",
    "render_text",
    "write_report",
]
