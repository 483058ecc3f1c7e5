"""Structured logging helpers for the fan-out engine."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from core.paths import get_logs_dir

LOGGER = logging.getLogger("fanout.orchestrator.logs")

# Event ids grouped by phase.
EVT_RUN_START = 2000
EVT_RUN_END = 2001
EVT_PARTITIONED = 2100
EVT_TASK_CREATED = 2200
EVT_TASK_TRANSITION = 2201
EVT_TASK_CORRUPT = 2202
EVT_DISPATCH = 2300
EVT_DISPATCH_FAILED = 2301
EVT_REAP = 2302
EVT_TIMEOUT = 2303
EVT_CANCEL = 2400
EVT_FORCED_CANCEL = 2401
EVT_REPORT = 2500
EVT_POSTPROCESS = 2501


class OrchestratorLogger:
    """Write structured JSONL events for one run."""

    def __init__(self, output_root: Path) -> None:
        self._log_path = get_logs_dir(Path(output_root)) / "orchestrator.jsonl"
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    def log_event(
        self,
        *,
        level: str,
        event_id: int,
        partition: Optional[str],
        phase: str,
        ok: bool,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event_id": int(event_id),
            "partition": partition,
            "phase": phase,
            "ok": ok,
        }
        if data:
            payload.update(data)
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        mirror = getattr(logging, level, logging.INFO)
        LOGGER.log(logging.DEBUG if mirror <= logging.INFO else mirror, "%s", line)

    # ------------------------------------------------------------------
    def log_run(self, event_id: int, ok: bool, **data: Any) -> None:
        self.log_event(level="INFO", event_id=event_id, partition=None, phase="run", ok=ok, data=data)

    def log_task(self, partition: str, phase: str, event_id: int, ok: bool, **data: Any) -> None:
        self.log_event(
            level="INFO" if ok else "WARNING",
            event_id=event_id,
            partition=partition,
            phase=phase,
            ok=ok,
            data=data,
        )

    def log_error(self, event_id: int, partition: Optional[str], phase: str, err: BaseException, **data: Any) -> None:
        payload = dict(data)
        payload["err"] = type(err).__name__
        payload["err_msg"] = str(err)
        self.log_event(
            level="ERROR",
            event_id=event_id,
            partition=partition,
            phase=phase,
            ok=False,
            data=payload,
        )


__all__ = ["OrchestratorLogger"]
