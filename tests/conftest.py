"""
Shared Test Fixtures
====================

Deterministic collaborators for the sync tests:
- ``FakeClock``: controllable UTC clock
- ``InMemoryTaskRepository``: remote store with server-side filtering,
  pagination, call recording and failure injection
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from taskflow.core.errors import ConnectivityError, NotFoundError
from taskflow.core.filters import filter_window
from taskflow.models.task import FilterKey, Task, TaskImportance
from taskflow.schemas.task import TaskCreate, TaskPage, TaskPatch
from taskflow.services.pending_queue import PendingChangeQueue
from taskflow.services.sync_engine import SyncEngine
from taskflow.services.task_cache import TaskCache
from taskflow.services.task_store import TaskStore

NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class InMemoryTaskRepository:
    """
    In-memory ``TaskRepository``.

    - ``offline = True`` makes every call raise ``ConnectivityError``
    - ``failures[op]`` holds exceptions raised by the next calls to ``op``
    - ``pauses`` holds events that the next ``list`` calls wait on
    """

    def __init__(self, clock: FakeClock, page_size: Optional[int] = None) -> None:
        self.clock = clock
        self.page_size = page_size
        self.records: dict[str, Task] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, list[Exception]] = {}
        self.pauses: list[asyncio.Event] = []
        self.offline = False
        self._next_id = 1

    def seed(self, *tasks: Task) -> None:
        for task in tasks:
            self.records[task.id] = task

    def fail(self, op: str, *errors: Exception) -> None:
        self.failures.setdefault(op, []).extend(errors)

    def ops(self, op: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == op]

    def _check(self, op: str) -> None:
        if self.offline:
            raise ConnectivityError()
        pending = self.failures.get(op)
        if pending:
            raise pending.pop(0)

    async def list(self, filter_key: FilterKey, cursor: Optional[str] = None) -> TaskPage:
        self.calls.append(("list", filter_key, cursor))
        if self.pauses:
            await self.pauses.pop(0).wait()
        self._check("list")
        window = filter_window(filter_key, self.clock().date())
        matches = sorted(
            (task for task in self.records.values() if window.contains(task)),
            key=lambda task: (task.importance is not TaskImportance.URGENT, task.due_date),
        )
        if self.page_size is None:
            return TaskPage(tasks=matches)
        start = int(cursor or 0)
        end = start + self.page_size
        has_more = end < len(matches)
        return TaskPage(
            tasks=matches[start:end],
            next_cursor=str(end) if has_more else None,
            has_more=has_more,
        )

    async def create(self, task: TaskCreate) -> str:
        self.calls.append(("create", task))
        self._check("create")
        task_id = f"rec{self._next_id}"
        self._next_id += 1
        self.records[task_id] = task.to_task(task_id)
        return task_id

    async def update(self, task_id: str, patch: TaskPatch) -> None:
        self.calls.append(("update", task_id, patch))
        self._check("update")
        if task_id not in self.records:
            raise NotFoundError(message=f"Record {task_id} not found")
        self.records[task_id] = patch.apply_to(self.records[task_id])

    async def delete(self, task_id: str) -> None:
        self.calls.append(("delete", task_id))
        self._check("delete")
        if task_id not in self.records:
            raise NotFoundError(message=f"Record {task_id} not found")
        del self.records[task_id]


def make_task(task_id: str = "rec-a", **overrides) -> Task:
    """Build a task due today unless told otherwise."""
    data = {
        "id": task_id,
        "title": f"Task {task_id}",
        "due_date": NOW,
    }
    data.update(overrides)
    return Task(**data)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def repository(clock: FakeClock) -> InMemoryTaskRepository:
    return InMemoryTaskRepository(clock)


@pytest.fixture()
def cache(clock: FakeClock) -> TaskCache:
    return TaskCache(clock=clock)


@pytest.fixture()
def queue(clock: FakeClock) -> PendingChangeQueue:
    return PendingChangeQueue(clock=clock)


@pytest.fixture()
def engine(
    repository: InMemoryTaskRepository,
    cache: TaskCache,
    queue: PendingChangeQueue,
    clock: FakeClock,
) -> SyncEngine:
    return SyncEngine(repository, cache, queue, timeout_seconds=1.0, clock=clock)


@pytest.fixture()
def store(engine: SyncEngine, clock: FakeClock) -> TaskStore:
    return TaskStore(engine, clock=clock)
