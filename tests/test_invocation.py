"""Tests for invocation descriptors and process control."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

from orchestrator.dispatch import classify_outcome
from orchestrator.errors import ConfigurationError, DispatchError
from orchestrator.invocation import InvocationSpec, build_invocation, launch, resolve_engine, stop
from orchestrator.types import Partition, RunConfig, TaskState


def _config(tmp_path: Path, **overrides) -> RunConfig:
    values = dict(source=tmp_path / "hosts.txt", output_root=tmp_path / "out")
    values.update(overrides)
    return RunConfig(**values)


def _partition(tmp_path: Path) -> Partition:
    return Partition("03", tmp_path / "out" / "chunks" / "chunk_03.txt", 10, 30)


def test_plain_mode_argv(tmp_path) -> None:
    config = _config(tmp_path, invocation_threads=40, extra_args=("-mc", "200"))

    spec = build_invocation(config, _partition(tmp_path))

    out = tmp_path / "out"
    assert spec.argv == [
        "ffuf",
        "-w",
        str(out / "chunks" / "chunk_03.txt"),
        "-u",
        "https://FUZZ/.DS_Store",
        "-o",
        str(out / "raw_results" / "chunk_03.json"),
        "-of",
        "json",
        "-t",
        "40",
        "-mc",
        "200",
    ]
    assert spec.log_path == out / "logs" / "chunk_03.log"
    assert spec.cwd == out


def test_wordlist_mode_binds_partition_to_host(tmp_path) -> None:
    wordlist = tmp_path / "words.txt"
    config = _config(tmp_path, wordlist=wordlist, target_path="/FUZZ", scheme="http")

    spec = build_invocation(config, _partition(tmp_path))

    assert spec.args[:4] == (
        "-w",
        f"{tmp_path / 'out' / 'chunks' / 'chunk_03.txt'}:HOST",
        "-w",
        f"{wordlist}:FUZZ",
    )
    assert spec.args[spec.args.index("-u") + 1] == "http://HOST/FUZZ"


def test_engine_prefix_arguments_are_kept(tmp_path) -> None:
    config = _config(tmp_path, engine_command=(sys.executable, "stub.py"))

    spec = build_invocation(config, _partition(tmp_path), executable="/usr/bin/python3")

    assert spec.executable == "/usr/bin/python3"
    assert spec.args[0] == "stub.py"


def test_hostile_values_stay_single_arguments(tmp_path) -> None:
    config = _config(tmp_path, target_path="/a b;rm -rf $HOME")

    spec = build_invocation(config, _partition(tmp_path))

    assert "https://FUZZ/a b;rm -rf $HOME" in spec.args


def test_resolve_engine(tmp_path) -> None:
    assert resolve_engine((sys.executable,)) == sys.executable
    with pytest.raises(ConfigurationError):
        resolve_engine(("definitely-not-an-installed-engine-binary",))
    with pytest.raises(ConfigurationError):
        resolve_engine((str(tmp_path / "missing" / "ffuf"),))
    with pytest.raises(ConfigurationError):
        resolve_engine(())


def test_launch_failure_raises_dispatch_error(tmp_path) -> None:
    spec = InvocationSpec(
        partition_id="00",
        executable=str(tmp_path / "no-such-engine"),
        args=(),
        raw_output_path=tmp_path / "raw" / "chunk_00.json",
        log_path=tmp_path / "logs" / "chunk_00.log",
    )

    with pytest.raises(DispatchError):
        launch(spec)


def test_launch_captures_output_in_log(tmp_path) -> None:
    spec = InvocationSpec(
        partition_id="00",
        executable=sys.executable,
        args=("-c", "import sys; print('hello'); sys.stderr.write('oops\\n')"),
        raw_output_path=tmp_path / "raw" / "chunk_00.json",
        log_path=tmp_path / "logs" / "chunk_00.log",
    )

    process = launch(spec)

    assert process.wait(timeout=30) == 0
    log = spec.log_path.read_text(encoding="utf-8")
    assert "hello" in log and "oops" in log


def test_stop_terminates_running_process() -> None:
    process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])

    assert stop(process, 5.0) is True
    assert process.returncode is not None


@pytest.mark.skipif(os.name != "posix", reason="SIGTERM handling is POSIX specific")
def test_stop_escalates_to_kill() -> None:
    code = "import signal, sys, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); print('ready', flush=True); time.sleep(60)"
    process = subprocess.Popen([sys.executable, "-c", code], stdout=subprocess.PIPE, text=True)
    assert process.stdout.readline().strip() == "ready"

    assert stop(process, 0.2) is True
    assert process.returncode == -9
    process.stdout.close()


def _spec(tmp_path: Path) -> InvocationSpec:
    return InvocationSpec("01", "ffuf", (), tmp_path / "chunk_01.json", tmp_path / "chunk_01.log")


def test_outcome_classification(tmp_path) -> None:
    spec = _spec(tmp_path)

    missing = classify_outcome(spec, 0)
    assert (missing.state, missing.detail) == (TaskState.FAILED, "missing output artifact")

    spec.raw_output_path.write_text("", encoding="utf-8")
    assert classify_outcome(spec, 0).state is TaskState.COMPLETED
    assert classify_outcome(spec, 2).detail == "exit code 2"
    assert classify_outcome(spec, -15, timed_out=1.5).detail == "timeout after 1.5s"
    assert classify_outcome(spec, -15, cancelled=True).detail == "cancelled"
    assert classify_outcome(spec, None, cancelled=True, confirmed_dead=False).detail == "forced-cancellation"
    assert classify_outcome(spec, 2).failure() is not None
