from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

__all__ = [
    "OUTPUT_SUBDIRS",
    "ensure_output_structure",
    "get_chunks_dir",
    "get_dashboard_dir",
    "get_default_settings_paths",
    "get_logs_dir",
    "get_pretty_dir",
    "get_raw_dir",
    "get_status_dir",
    "get_summary_dir",
    "get_tmp_dir",
    "partition_label",
    "resolve_output_root",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

OUTPUT_SUBDIRS = (
    "chunks",
    "raw_results",
    "prettified_results",
    "logs",
    "status",
    "summary",
    "tmp",
    "dashboard",
)


def _expand_path(value: str | os.PathLike[str]) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(str(value)))
    return Path(expanded).resolve()


def resolve_output_root(value: str | os.PathLike[str]) -> Path:
    """Expand ``~``/environment variables in *value* and return an absolute path."""

    return _expand_path(value)


def get_chunks_dir(output_root: Path) -> Path:
    return output_root / "chunks"


def get_raw_dir(output_root: Path) -> Path:
    return output_root / "raw_results"


def get_pretty_dir(output_root: Path) -> Path:
    return output_root / "prettified_results"


def get_logs_dir(output_root: Path) -> Path:
    return output_root / "logs"


def get_status_dir(output_root: Path) -> Path:
    return output_root / "status"


def get_summary_dir(output_root: Path) -> Path:
    return output_root / "summary"


def get_tmp_dir(output_root: Path) -> Path:
    return output_root / "tmp"


def get_dashboard_dir(output_root: Path) -> Path:
    return output_root / "dashboard"


def ensure_output_structure(output_root: Path) -> None:
    output_root.mkdir(parents=True, exist_ok=True)
    for name in OUTPUT_SUBDIRS:
        (output_root / name).mkdir(parents=True, exist_ok=True)


def partition_label(partition_id: str) -> str:
    """Return the file stem used for every artifact of *partition_id*."""

    return f"chunk_{partition_id}"


def get_default_settings_paths(output_root: Path, explicit: Optional[Path] = None) -> list[Path]:
    """Return the search order for settings.json files."""

    paths: list[Path] = []
    if explicit is not None:
        paths.append(_expand_path(explicit))
    paths.append(output_root / "settings.json")
    paths.append(_PROJECT_ROOT / "settings.json")
    return paths
