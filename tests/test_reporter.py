"""Tests for the final report, prettify and cleanup helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from orchestrator.prettify import prettify_outputs
from orchestrator.reporter import build_summary, cleanup_output, render_text, write_report
from orchestrator.types import RunConfig, Task, TaskState


def _config(tmp_path: Path) -> RunConfig:
    return RunConfig(source=tmp_path / "hosts.txt", output_root=tmp_path / "out", partition_size=10, concurrency=2)


def _tasks():
    return {
        "00": Task("00", TaskState.COMPLETED),
        "01": Task("01", TaskState.FAILED, error="exit code 1"),
        "02": Task("02", TaskState.PENDING),
        "03": Task("03", TaskState.UNKNOWN, error="corrupt status record: bad"),
    }


def test_summary_is_derived_from_records(tmp_path) -> None:
    summary = build_summary(_config(tmp_path), _tasks(), source_items=35, elapsed_seconds=120.0, cancelled=True)

    snap = summary.snapshot
    assert (snap.total, snap.completed, snap.failed, snap.pending, snap.unknown) == (3, 1, 1, 1, 1)
    assert [(f.partition_id, f.error) for f in summary.failed] == [("01", "exit code 1")]
    assert summary.not_dispatched == ("02",)
    assert summary.unknown == ("03",)
    assert snap.partitions == 4
    assert summary.success_rate_pct == pytest.approx(100.0 / 3)
    assert summary.config["partition_size"] == 10


def test_report_files_are_written(tmp_path) -> None:
    config = _config(tmp_path)
    summary = build_summary(config, _tasks(), source_items=35, elapsed_seconds=60.0)

    txt_path, json_path = write_report(summary, config.output_root)

    assert txt_path == config.output_root / "summary" / "final_report.txt"
    payload = json.loads(json_path.read_text(encoding="utf-8"))
    assert payload["totals"]["failed"] == 1
    assert payload["failed_partitions"] == [{"partition": "01", "error": "exit code 1"}]
    assert payload["not_dispatched"] == ["02"]
    assert payload["cancelled"] is False
    text = txt_path.read_text(encoding="utf-8")
    assert "- Total Partitions: 4" in text
    assert "- 01: exit code 1" in text
    assert "UNREADABLE STATUS RECORDS:" in text


def test_text_report_without_failures_has_no_failure_section(tmp_path) -> None:
    config = _config(tmp_path)
    summary = build_summary(config, [Task("00", TaskState.COMPLETED)], source_items=3, elapsed_seconds=1.0)

    text = render_text(summary, config.output_root)

    assert "FAILED PARTITIONS" not in text
    assert "Success Rate: 100%" in text


def test_cleanup_removes_only_empty_artifacts(tmp_path) -> None:
    root = tmp_path / "out"
    for sub in ("raw_results", "logs", "status", "chunks"):
        (root / sub).mkdir(parents=True)
    (root / "raw_results" / "chunk_00.json").write_text("", encoding="utf-8")
    (root / "raw_results" / "chunk_01.json").write_text("{}", encoding="utf-8")
    (root / "logs" / "chunk_00.log").write_text("", encoding="utf-8")
    (root / "status" / "chunk_00.status").write_text("", encoding="utf-8")
    (root / "chunks" / "chunk_00.txt").write_text("", encoding="utf-8")

    removed = cleanup_output(root)

    assert removed == 2
    assert not (root / "raw_results" / "chunk_00.json").exists()
    assert (root / "raw_results" / "chunk_01.json").exists()
    assert (root / "status" / "chunk_00.status").exists()
    assert (root / "chunks" / "chunk_00.txt").exists()


def test_prettify_formats_completed_outputs(tmp_path) -> None:
    root = tmp_path / "out"
    raw = root / "raw_results"
    raw.mkdir(parents=True)
    (raw / "chunk_00.json").write_text('{"results":[{"url":"https://a/.DS_Store"}]}', encoding="utf-8")
    (raw / "chunk_01.json").write_text('{"results":[]}', encoding="utf-8")
    tasks = [
        Task("00", TaskState.COMPLETED, raw_output_path=str(raw / "chunk_00.json")),
        Task("01", TaskState.FAILED, raw_output_path=str(raw / "chunk_01.json"), error="exit code 1"),
    ]

    stats = prettify_outputs(root, tasks)

    assert stats.formatted == 1
    pretty = root / "prettified_results" / "chunk_00_pretty.json"
    assert json.loads(pretty.read_text(encoding="utf-8"))["results"][0]["url"] == "https://a/.DS_Store"
    assert "\n  " in pretty.read_text(encoding="utf-8")
    assert not (root / "prettified_results" / "chunk_01_pretty.json").exists()
