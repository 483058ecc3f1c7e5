"""Structured scan-engine invocations: build, resolve, launch and stop."""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from core.paths import get_logs_dir, get_raw_dir, partition_label

from .errors import ConfigurationError, DispatchError
from .types import FUZZ_KEYWORD, HOST_KEYWORD, Partition, RunConfig

LOGGER = logging.getLogger("fanout.invocation")


@dataclass(frozen=True, slots=True)
class InvocationSpec:
    """Everything needed to run the engine for one partition, as an argument vector."""

    partition_id: str
    executable: str
    args: Tuple[str, ...]
    raw_output_path: Path
    log_path: Path
    cwd: Optional[Path] = None

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]

    def describe(self) -> str:
        return " ".join(self.argv)


def resolve_engine(command: Sequence[str]) -> str:
    """Return the absolute path of the engine executable or raise ``ConfigurationError``."""

    if not command or not str(command[0]).strip():
        raise ConfigurationError("Engine command is empty")
    candidate = str(command[0])
    direct = Path(candidate).expanduser()
    if os.sep in candidate or (os.altsep and os.altsep in candidate):
        if direct.is_file() and os.access(direct, os.X_OK):
            return str(direct)
        raise ConfigurationError(f"Engine executable '{candidate}' is missing or not executable")
    found = shutil.which(candidate)
    if not found:
        raise ConfigurationError(f"Engine executable '{candidate}' was not found on PATH")
    return found


def target_url(config: RunConfig) -> str:
    placeholder = HOST_KEYWORD if config.wordlist_mode else FUZZ_KEYWORD
    return f"{config.scheme}://{placeholder}{config.target_path}"


def build_invocation(
    config: RunConfig,
    partition: Partition,
    *,
    executable: Optional[str] = None,
) -> InvocationSpec:
    """Translate *config* and *partition* into an :class:`InvocationSpec`.

    Plain mode substitutes every partition record for ``FUZZ`` in the host
    position. Wordlist mode binds the partition to ``HOST`` and the shared
    wordlist to ``FUZZ`` so one process covers every host/word pair of the
    partition.
    """

    root = Path(config.output_root)
    label = partition_label(partition.partition_id)
    raw_output = get_raw_dir(root) / f"{label}.json"
    log_path = get_logs_dir(root) / f"{label}.log"

    args: List[str] = list(config.engine_command[1:])
    if config.wordlist_mode:
        args += [
            "-w",
            f"{partition.source_path}:{HOST_KEYWORD}",
            "-w",
            f"{config.wordlist}:{FUZZ_KEYWORD}",
        ]
    else:
        args += ["-w", str(partition.source_path)]
    args += [
        "-u",
        target_url(config),
        "-o",
        str(raw_output),
        "-of",
        "json",
        "-t",
        str(config.invocation_threads),
    ]
    args += list(config.extra_args)
    return InvocationSpec(
        partition_id=partition.partition_id,
        executable=executable or config.engine_command[0],
        args=tuple(args),
        raw_output_path=raw_output,
        log_path=log_path,
        cwd=root,
    )


def launch(spec: InvocationSpec) -> subprocess.Popen:
    """Start the engine with stdout and stderr captured in the partition log."""

    try:
        spec.log_path.parent.mkdir(parents=True, exist_ok=True)
        spec.raw_output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(spec.log_path, "wb") as log_handle:
            process = subprocess.Popen(
                spec.argv,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                cwd=str(spec.cwd) if spec.cwd else None,
                start_new_session=(os.name == "posix"),
            )
    except OSError as exc:
        raise DispatchError(f"Could not launch '{spec.executable}': {exc}") from exc
    LOGGER.debug("Launched partition %s as pid %s: %s", spec.partition_id, process.pid, spec.describe())
    return process


def stop(process: subprocess.Popen, grace_s: float) -> bool:
    """Terminate *process*, escalating to kill after *grace_s*; True once it is gone."""

    if process.poll() is not None:
        return True
    try:
        process.terminate()
    except OSError:
        pass
    try:
        process.wait(timeout=max(0.0, grace_s))
        return True
    except subprocess.TimeoutExpired:
        LOGGER.warning("pid %s ignored terminate for %.1fs; killing", process.pid, grace_s)
    try:
        process.kill()
    except OSError:
        pass
    try:
        process.wait(timeout=max(1.0, grace_s))
    except subprocess.TimeoutExpired:
        LOGGER.error("pid %s survived kill", process.pid)
        return False
    return True


__all__ = [
    "InvocationSpec",
    "build_invocation",
    "launch",
    "resolve_engine",
    "stop",
    "target_url",
]
