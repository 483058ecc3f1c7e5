from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest

from orchestrator.types import RunConfig

STUB_ENGINE = Path(__file__).resolve().parent / "stub_engine.py"


@pytest.fixture(autouse=True)
def _clean_stub_env(monkeypatch):
    for name in (
        "FANOUT_STUB_LEDGER",
        "FANOUT_STUB_FAIL",
        "FANOUT_STUB_NO_OUTPUT",
        "FANOUT_STUB_SLEEP",
        "FANOUT_STUB_INVALID",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def stub_command() -> Tuple[str, ...]:
    return (sys.executable, str(STUB_ENGINE))


@pytest.fixture
def make_source(tmp_path) -> Callable[..., Path]:
    def _make(count: int, *, name: str = "hosts.txt", trailing_newline: bool = True) -> Path:
        path = tmp_path / name
        text = "\n".join(f"host{i:03d}.example.com" for i in range(count))
        if trailing_newline and count:
            text += "\n"
        path.write_text(text, encoding="utf-8")
        return path

    return _make


@pytest.fixture
def make_config(tmp_path, stub_command) -> Callable[..., RunConfig]:
    def _make(source: Path, **overrides) -> RunConfig:
        values = dict(
            source=source,
            output_root=tmp_path / "out",
            partition_size=10,
            concurrency=2,
            invocation_threads=4,
            engine_command=stub_command,
            poll_interval_s=0.05,
            refresh_interval_s=0.1,
            cancel_grace_s=2.0,
            dashboard_enabled=False,
        )
        values.update(overrides)
        return RunConfig(**values)

    return _make


@pytest.fixture
def ledger(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "ledger.txt"
    monkeypatch.setenv("FANOUT_STUB_LEDGER", str(path))
    return path


def read_ledger(path: Path) -> List[Tuple[str, str, float]]:
    if not path.exists():
        return []
    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        event, label, _pid, ts = line.split()
        entries.append((event, label, float(ts)))
    return entries


def max_overlap(entries: List[Tuple[str, str, float]]) -> int:
    """Largest number of stub processes alive at once according to the ledger."""

    ordered = sorted(entries, key=lambda item: (item[2], 0 if item[0] == "end" else 1))
    current = peak = 0
    for event, _label, _ts in ordered:
        current += 1 if event == "start" else -1
        peak = max(peak, current)
    return peak


def starts_by_label(entries: List[Tuple[str, str, float]]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for event, label, _ts in entries:
        if event == "start":
            counts[label] = counts.get(label, 0) + 1
    return counts


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
