"""Split a large ordered source list into fixed-size partition files."""
from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import BinaryIO, List, Optional

from core.paths import partition_label

from .errors import InvalidInput
from .types import Partition

LOGGER = logging.getLogger("fanout.partitioner")

_MIN_WIDTH = 2
_WRITE_BUFFER = 1024 * 1024


def count_records(source: Path) -> int:
    """Return the number of newline-separated records in *source*."""

    count = 0
    last = b""
    try:
        with open(source, "rb") as handle:
            while True:
                block = handle.read(_WRITE_BUFFER)
                if not block:
                    break
                count += block.count(b"\n")
                last = block[-1:]
    except OSError as exc:
        raise InvalidInput(f"Source '{source}' is unreadable: {exc}") from exc
    if last and last != b"\n":
        count += 1
    return count


def id_width(partition_count: int) -> int:
    """Zero-padding width that keeps lexicographic and numeric order aligned."""

    if partition_count <= 1:
        return _MIN_WIDTH
    return max(_MIN_WIDTH, len(str(partition_count - 1)))


def chunk_path(target_dir: Path, partition_id: str) -> Path:
    return target_dir / f"{partition_label(partition_id)}.txt"


def _existing_chunks(target_dir: Path) -> List[Path]:
    if not target_dir.exists():
        return []
    return sorted(target_dir.glob("chunk_*.txt"))


def partition_source(source: Path, target_dir: Path, chunk_size: int) -> List[Partition]:
    """Write ``ceil(N / chunk_size)`` partition files for *source* into *target_dir*.

    Records keep their original order; each written record is terminated by a
    newline so that concatenating the partitions in id order reproduces the
    source (with a final newline). The source is never modified.
    """

    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size <= 0:
        raise InvalidInput(f"Partition size must be a positive integer, got {chunk_size!r}")
    source = Path(source)
    if not source.is_file():
        raise InvalidInput(f"Source '{source}' does not exist or is not a file")
    existing = _existing_chunks(target_dir)
    if existing:
        raise InvalidInput(
            f"Partition directory '{target_dir}' already holds {len(existing)} partition files"
        )

    total = count_records(source)
    if total == 0:
        raise InvalidInput(f"Source '{source}' is empty")

    partition_count = math.ceil(total / chunk_size)
    width = id_width(partition_count)
    target_dir.mkdir(parents=True, exist_ok=True)
    LOGGER.info(
        "Splitting %s records into %s partitions of up to %s (id width %s)",
        f"{total:,}",
        partition_count,
        chunk_size,
        width,
    )

    partitions: List[Partition] = []
    out: Optional[BinaryIO] = None
    written = 0
    index = 0

    def _close_current() -> None:
        nonlocal out, written, index
        if out is None:
            return
        out.close()
        out = None
        partition_id = f"{len(partitions):0{width}d}"
        partitions.append(Partition(partition_id, chunk_path(target_dir, partition_id), written, index))
        index += written
        written = 0

    try:
        with open(source, "rb") as handle:
            for raw in handle:
                if out is None:
                    partition_id = f"{len(partitions):0{width}d}"
                    out = open(chunk_path(target_dir, partition_id), "wb", buffering=_WRITE_BUFFER)
                out.write(raw if raw.endswith(b"\n") else raw + b"\n")
                written += 1
                if written == chunk_size:
                    _close_current()
        _close_current()
    except OSError as exc:
        raise InvalidInput(f"Failed to partition '{source}': {exc}") from exc
    finally:
        if out is not None:
            out.close()

    if index != total or len(partitions) != partition_count:
        # the source changed between the counting pass and the split pass
        raise InvalidInput(
            f"Source '{source}' changed while partitioning ({index} of {total} records written)"
        )
    return partitions


__all__ = [
    "chunk_path",
    "count_records",
    "id_width",
    "partition_source",
]
