from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from .atomic import atomic_write_json
from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

LOGGER = logging.getLogger("fanout.settings")

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
]

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "partition": {
        "size": 10000,
    },
    "dispatch": {
        "concurrency": 5,
        "strategy": "executor",
        "poll_ms": 500,
        "invocation_timeout_s": 0,
        "cancel_grace_s": 5,
    },
    "engine": {
        "command": ["ffuf"],
        "threads": 30,
        "target_path": "/.DS_Store",
        "scheme": "https",
        "extra_args": [],
    },
    "dashboard": {
        "enabled": None,
        "refresh_s": 2,
        "api_host": "127.0.0.1",
        "api_port": None,
    },
    "output": {
        "prettify": True,
        "cleanup_empty": True,
    },
}


def _overlay(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for key, default in defaults.items():
        given = overrides.get(key, default)
        if isinstance(default, dict):
            merged[key] = _overlay(default, given if isinstance(given, dict) else {})
        elif isinstance(default, list):
            merged[key] = list(given if isinstance(given, list) else default)
        else:
            merged[key] = given
    # keys we do not know survive so the validator can report them
    merged.update({key: value for key, value in overrides.items() if key not in merged})
    return merged


def merge_defaults(data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return *data* laid over :data:`DEFAULT_SETTINGS` without mutating either."""

    return _overlay(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    try:
        version = int(settings.get("version") or 0)
    except (TypeError, ValueError):
        version = 0
    if version < SETTINGS_VERSION:
        LOGGER.debug("Upgrading settings from version %s to %s", version, SETTINGS_VERSION)
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], output_root: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("Ignoring unknown settings keys: %s", ", ".join(unknown))
    logs_dir = get_logs_dir(output_root)
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        atomic_write_json(logs_dir / "settings_unknown.json", {"ts": time.time(), "unknown": unknown})
    except OSError as exc:
        LOGGER.debug("Could not record unknown settings keys: %s", exc)


def _read_first(candidates: Iterable[Path]) -> Dict[str, Any]:
    for candidate in candidates:
        if not candidate.is_file():
            continue
        try:
            loaded = json.loads(candidate.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.warning("Skipping unreadable settings file %s: %s", candidate, exc)
            continue
        if isinstance(loaded, dict):
            LOGGER.debug("Loaded settings from %s", candidate)
            return loaded
        LOGGER.warning("Skipping settings file %s: top level is not an object", candidate)
    return {}


def load_settings(output_root: Path, explicit: Optional[Path] = None) -> Dict[str, Any]:
    """Merge the first readable settings file over the defaults.

    Search order: *explicit*, ``<output_root>/settings.json``, then the
    project-level ``settings.json``.
    """

    merged = _apply_migrations(merge_defaults(_read_first(get_default_settings_paths(output_root, explicit))))
    _log_unknown_keys(merged, output_root)
    return merged
