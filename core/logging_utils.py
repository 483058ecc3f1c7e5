from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict

from .paths import get_logs_dir

ROOT_LOGGER_NAME = "fanout"
LOG_FILENAME = "fanout.log.jsonl"


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in getattr(record, "__dict__", {}).items():
            if key.startswith("_") or key in payload or key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
            except TypeError:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False)


_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def configure_json_logging(output_root: Path, *, verbose: bool = False) -> logging.Logger:
    """Attach the JSONL file handler and a console handler to the ``fanout`` logger."""

    logs_dir = get_logs_dir(output_root)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / LOG_FILENAME
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    has_file = False
    has_console = False
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            if getattr(handler, "baseFilename", None) == str(log_path):
                has_file = True
                continue
            # a previous run in the same process pointed somewhere else
            logger.removeHandler(handler)
            handler.close()
        elif isinstance(handler, logging.StreamHandler):
            has_console = True
            handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not has_file:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(JsonLogFormatter())
        logger.addHandler(file_handler)
    if not has_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        console.setLevel(logging.DEBUG if verbose else logging.INFO)
        logger.addHandler(console)
    logger.propagate = False
    return logger


def close_json_logging() -> None:
    """Detach and close every handler added by :func:`configure_json_logging`."""

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()


__all__ = [
    "JsonLogFormatter",
    "LOG_FILENAME",
    "ROOT_LOGGER_NAME",
    "close_json_logging",
    "configure_json_logging",
]
