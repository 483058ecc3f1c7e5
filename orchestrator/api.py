"""Read-only HTTP status surface for a running fan-out."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .aggregator import Aggregator
from .errors import UnknownTask
from .store import TaskStore
from .types import TaskState

LOGGER = logging.getLogger("fanout.api")


class SnapshotResponse(BaseModel):
    total: int
    completed: int
    failed: int
    processing: int
    pending: int
    unknown: int
    partitions: int
    elapsed_seconds: float
    throughput_per_minute: float
    eta_minutes: Optional[float] = None
    progress_pct: float
    taken_utc: Optional[str] = None


class TaskResponse(BaseModel):
    partition_id: str
    state: str
    created: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    pid: Optional[int] = None
    exit_code: Optional[int] = None
    log_path: Optional[str] = None
    raw_output_path: Optional[str] = None
    error: Optional[str] = None


class TaskListResponse(BaseModel):
    tasks: List[TaskResponse]
    counts: Dict[str, int] = Field(default_factory=dict)


class StatusService:
    """Expose the aggregator's latest snapshot and the task records over HTTP."""

    def __init__(self, store: TaskStore, aggregator: Aggregator) -> None:
        self._store = store
        self._aggregator = aggregator

    def router(self) -> APIRouter:
        router = APIRouter(prefix="/v1/run", tags=["run"])

        @router.get("/snapshot", response_model=SnapshotResponse)
        def snapshot() -> SnapshotResponse:
            return SnapshotResponse(**self._aggregator.latest().to_dict())

        @router.get("/tasks", response_model=TaskListResponse)
        def tasks(state: Optional[str] = None, limit: int = 1000, offset: int = 0) -> TaskListResponse:
            records = list(self._store.read_all().values())
            counts: Dict[str, int] = {}
            for task in records:
                counts[task.state.value] = counts.get(task.state.value, 0) + 1
            if state:
                try:
                    wanted = TaskState(state.upper())
                except ValueError:
                    raise HTTPException(status_code=400, detail=f"Unknown state '{state}'")
                records = [task for task in records if task.state is wanted]
            window = records[max(0, offset): max(0, offset) + max(0, limit)]
            return TaskListResponse(tasks=[TaskResponse(**task.to_dict()) for task in window], counts=counts)

        @router.get("/tasks/{partition_id}", response_model=TaskResponse)
        def task(partition_id: str) -> TaskResponse:
            try:
                record = self._store.get(partition_id)
            except UnknownTask:
                raise HTTPException(status_code=404, detail="Partition not found")
            return TaskResponse(**record.to_dict())

        return router

    def app(self) -> FastAPI:
        app = FastAPI(title="ffuf-fanout status", docs_url=None, redoc_url=None)
        app.include_router(self.router())
        return app


class StatusServer:
    """Serve :class:`StatusService` with uvicorn on a daemon thread."""

    def __init__(self, service: StatusService, *, host: str, port: int) -> None:
        self._host = host
        self._port = int(port)
        config = uvicorn.Config(
            service.app(),
            host=host,
            port=self._port,
            log_level="warning",
            access_log=False,
        )
        # uvicorn skips signal handlers off the main thread
        self._server = uvicorn.Server(config)
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}/v1/run"

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._server.run, name="fanout-status-api", daemon=True)
        self._thread.start()
        LOGGER.info("Status API listening on %s", self.url)

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        thread = self._thread
        if thread:
            thread.join(timeout=timeout)
        self._thread = None


__all__ = ["SnapshotResponse", "StatusServer", "StatusService", "TaskListResponse", "TaskResponse"]
