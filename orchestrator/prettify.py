"""Indented copies of completed raw outputs for human inspection."""
from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from core.atomic import atomic_write_text
from core.paths import get_pretty_dir, partition_label

from .types import Task, TaskState

LOGGER = logging.getLogger("fanout.prettify")


@dataclass(slots=True)
class PrettifyStats:
    formatted: int = 0
    copied: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "formatted": self.formatted,
            "copied": self.copied,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def pretty_path(output_root: Path, partition_id: str) -> Path:
    return get_pretty_dir(output_root) / f"{partition_label(partition_id)}_pretty.json"


def prettify_file(raw_path: Path, target: Path) -> bool:
    """Write an indented copy of *raw_path*; fall back to a verbatim copy for invalid JSON.

    Returns True when the content was reformatted.
    """

    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        with raw_path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (json.JSONDecodeError, UnicodeDecodeError):
        shutil.copyfile(raw_path, target)
        return False
    atomic_write_text(target, json.dumps(payload, indent=2, ensure_ascii=False) + "\n", fsync=False)
    return True


def prettify_outputs(output_root: Path, tasks: Iterable[Task]) -> PrettifyStats:
    stats = PrettifyStats()
    for task in tasks:
        if task.state is not TaskState.COMPLETED or not task.raw_output_path:
            continue
        raw_path = Path(task.raw_output_path)
        if not raw_path.exists() or raw_path.stat().st_size == 0:
            stats.skipped += 1
            continue
        try:
            if prettify_file(raw_path, pretty_path(output_root, task.partition_id)):
                stats.formatted += 1
            else:
                stats.copied += 1
                LOGGER.debug("Partition %s output is not valid JSON; copied verbatim", task.partition_id)
        except OSError as exc:
            stats.errors += 1
            LOGGER.warning("Could not prettify %s: %s", raw_path, exc)
    return stats


__all__ = ["PrettifyStats", "prettify_file", "prettify_outputs", "pretty_path"]
