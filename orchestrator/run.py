"""End-to-end fan-out run: partition, dispatch, observe, report."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.paths import ensure_output_structure, get_chunks_dir, get_status_dir

from .aggregator import Aggregator
from .api import StatusServer, StatusService
from .cancellation import CancellationToken
from .events import EventChannel
from .invocation import resolve_engine, target_url
from .logs import (
    EVT_PARTITIONED,
    EVT_POSTPROCESS,
    EVT_REPORT,
    EVT_RUN_END,
    EVT_RUN_START,
    OrchestratorLogger,
)
from .partitioner import partition_source
from .prettify import prettify_outputs
from .reporter import build_summary, cleanup_output, write_report
from .scheduler import Scheduler, SchedulerResult
from .sinks import ConsoleSink, SnapshotFileSink
from .store import TaskStore
from .types import RunConfig, RunSummary

LOGGER = logging.getLogger("fanout.run")


@dataclass(slots=True)
class RunResult:
    summary: RunSummary
    report_txt: Path
    report_json: Path
    scheduler: SchedulerResult
    removed_empty: int = 0

    @property
    def cancelled(self) -> bool:
        return self.summary.cancelled


def run_fanout(
    config: RunConfig,
    *,
    token: Optional[CancellationToken] = None,
    executable: Optional[str] = None,
) -> RunResult:
    """Execute one complete run described by *config*.

    Configuration and partitioning problems raise before anything is
    launched; per-partition failures only show up in the summary.
    """

    config.validate()
    executable = executable or resolve_engine(config.engine_command)
    root = Path(config.output_root)
    ensure_output_structure(root)
    token = token or CancellationToken(grace_s=config.cancel_grace_s)

    orch_logger = OrchestratorLogger(root)
    orch_logger.log_run(EVT_RUN_START, True, engine=executable, **config.report_fields())
    LOGGER.info("Engine: %s", executable)
    LOGGER.info("Target: %s", target_url(config))

    partitions = partition_source(config.source, get_chunks_dir(root), config.partition_size)
    source_items = sum(partition.item_count for partition in partitions)
    orch_logger.log_run(EVT_PARTITIONED, True, partitions=len(partitions), items=source_items)

    channel = EventChannel()
    store = TaskStore(get_status_dir(root), logger=orch_logger, channel=channel)
    sinks: list = [ConsoleSink()]
    if config.dashboard_enabled:
        sinks.append(
            SnapshotFileSink(
                root,
                info={
                    "status_dir": str(get_status_dir(root)),
                    "total_partitions": len(partitions),
                    "source_items": source_items,
                    "refresh_s": config.refresh_interval_s,
                    **config.report_fields(),
                },
            )
        )
    aggregator = Aggregator(store, interval_s=config.refresh_interval_s, sinks=sinks)
    server: Optional[StatusServer] = None
    if config.api_port:
        server = StatusServer(StatusService(store, aggregator), host=config.api_host, port=config.api_port)

    scheduler = Scheduler(config, store, token=token, logger=orch_logger, executable=executable)
    aggregator.start()
    if server is not None:
        server.start()
    try:
        outcome = scheduler.run(partitions)
    finally:
        aggregator.stop()
        if server is not None:
            server.stop()
        aggregator.close_sinks()

    tasks = store.read_all()
    extras = {"strategy": config.strategy, "peak_in_flight": outcome.peak_in_flight}
    if outcome.cancel_reason:
        extras["cancel_reason"] = outcome.cancel_reason
    if outcome.swept:
        extras["forced_cancellation"] = list(outcome.swept)
    if config.prettify:
        stats = prettify_outputs(root, tasks.values())
        extras["prettify"] = stats.to_dict()
        orch_logger.log_run(EVT_POSTPROCESS, stats.errors == 0, **stats.to_dict())

    summary = build_summary(
        config,
        tasks,
        source_items=source_items,
        elapsed_seconds=aggregator.elapsed(),
        cancelled=outcome.cancelled,
        extras=extras,
    )
    report_txt, report_json = write_report(summary, root)
    orch_logger.log_run(EVT_REPORT, True, path=str(report_txt))
    removed = cleanup_output(root) if config.cleanup_empty else 0
    orch_logger.log_run(
        EVT_RUN_END,
        not summary.failed and not summary.cancelled,
        completed=summary.snapshot.completed,
        failed=summary.snapshot.failed,
        cancelled=summary.cancelled,
    )
    LOGGER.info(
        "Run finished: %s/%s partitions completed, %s failed%s",
        summary.snapshot.completed,
        summary.snapshot.total,
        summary.snapshot.failed,
        " (cancelled)" if summary.cancelled else "",
    )
    return RunResult(
        summary=summary,
        report_txt=report_txt,
        report_json=report_json,
        scheduler=outcome,
        removed_empty=removed,
    )


__all__ = ["RunResult", "run_fanout"]
