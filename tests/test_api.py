"""Tests for the read-only status API."""

from __future__ import annotations

from fastapi.testclient import TestClient

from orchestrator.aggregator import Aggregator
from orchestrator.api import StatusService
from orchestrator.store import TaskStore
from orchestrator.types import TaskState


def _client(tmp_path):
    store = TaskStore(tmp_path / "status")
    store.create_pending("00")
    store.create_pending("01")
    store.transition("00", TaskState.PROCESSING, pid=321)
    aggregator = Aggregator(store, interval_s=1.0)
    aggregator.tick()
    return TestClient(StatusService(store, aggregator).app()), store


def test_snapshot_endpoint(tmp_path) -> None:
    client, _store = _client(tmp_path)

    response = client.get("/v1/run/snapshot")

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 2
    assert payload["processing"] == 1
    assert payload["pending"] == 1
    assert payload["eta_minutes"] is None


def test_task_listing_and_filter(tmp_path) -> None:
    client, _store = _client(tmp_path)

    everything = client.get("/v1/run/tasks").json()
    running = client.get("/v1/run/tasks", params={"state": "processing"}).json()

    assert [task["partition_id"] for task in everything["tasks"]] == ["00", "01"]
    assert everything["counts"] == {"PROCESSING": 1, "PENDING": 1}
    assert [task["pid"] for task in running["tasks"]] == [321]
    assert client.get("/v1/run/tasks", params={"state": "sideways"}).status_code == 400


def test_single_task_lookup(tmp_path) -> None:
    client, store = _client(tmp_path)
    store.transition("00", TaskState.FAILED, "exit code 2", exit_code=2)

    found = client.get("/v1/run/tasks/00")
    missing = client.get("/v1/run/tasks/42")

    assert found.status_code == 200
    assert found.json()["state"] == "FAILED"
    assert found.json()["error"] == "exit code 2"
    assert missing.status_code == 404
