"""
Pending-Change Queue Tests
==========================

Tests for the ordered offline mutation queue including:
- Monotonic created_at across restarts and clock steps
- FIFO drain and per-task hold-back on failure
- Exponential backoff and the failed list
- Reentrancy guard
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import FakeClock
from taskflow.core.errors import (
    ConnectivityError,
    NotFoundError,
    ServerError,
    SyncInProgressError,
)
from taskflow.schemas.state import ChangeKind, PendingChange
from taskflow.schemas.task import TaskPatch
from taskflow.services.pending_queue import PendingChangeQueue


def _recorder(applied: list, fail: dict = None):
    """Build an apply callback that records calls and raises per task id."""
    fail = fail or {}

    async def apply(change: PendingChange) -> None:
        error = fail.get(change.task_id)
        if error is not None:
            raise error
        applied.append((change.task_id, change.kind, change.payload))

    return apply


# ---------------------------------------------------------------------------
# Enqueue / ordering
# ---------------------------------------------------------------------------

class TestEnqueue:
    """Tests for PendingChangeQueue.enqueue"""

    def test_created_at_strictly_increases(self, queue: PendingChangeQueue):
        first = queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="A"))
        second = queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="B"))

        assert second.created_at > first.created_at

    def test_created_at_survives_clock_stepping_back(self, clock: FakeClock):
        queue = PendingChangeQueue(clock=clock)
        first = queue.enqueue("rec-a", ChangeKind.DELETE)

        clock.advance(hours=-1)
        second = queue.enqueue("rec-b", ChangeKind.DELETE)

        assert second.created_at == first.created_at + 1

    def test_sequence_continues_after_restart(self, clock: FakeClock):
        queue = PendingChangeQueue(clock=clock)
        change = queue.enqueue("rec-a", ChangeKind.DELETE)

        clock.advance(days=-2)
        restarted = PendingChangeQueue(clock=clock)
        restarted.load([change], last_sequence=queue.last_sequence)
        later = restarted.enqueue("rec-b", ChangeKind.DELETE)

        assert later.created_at > change.created_at

    def test_load_sorts_by_created_at(self, queue: PendingChangeQueue):
        a = PendingChange(task_id="rec-a", kind=ChangeKind.DELETE, created_at=5)
        b = PendingChange(task_id="rec-b", kind=ChangeKind.DELETE, created_at=2)

        queue.load([a, b])

        assert [c.task_id for c in queue.entries] == ["rec-b", "rec-a"]
        assert queue.last_sequence == 5

    def test_update_requires_payload(self):
        with pytest.raises(ValueError):
            PendingChange(task_id="rec-a", kind=ChangeKind.UPDATE, created_at=1)


# ---------------------------------------------------------------------------
# Drain
# ---------------------------------------------------------------------------

class TestDrain:
    """Tests for PendingChangeQueue.drain"""

    @pytest.mark.asyncio
    async def test_empty_drain_is_noop(self, queue: PendingChangeQueue):
        applied = []
        before = queue.last_sequence

        report = await queue.drain(_recorder(applied))

        assert report.ok
        assert applied == []
        assert len(queue) == 0
        assert queue.last_sequence == before

    @pytest.mark.asyncio
    async def test_drain_applies_in_created_at_order(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="A1"))
        queue.enqueue("rec-b", ChangeKind.DELETE)
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="A2"))
        applied = []

        report = await queue.drain(_recorder(applied))

        assert [(task_id, kind) for task_id, kind, _ in applied] == [
            ("rec-a", ChangeKind.UPDATE),
            ("rec-b", ChangeKind.DELETE),
            ("rec-a", ChangeKind.UPDATE),
        ]
        assert applied[0][2].title == "A1"
        assert applied[2][2].title == "A2"
        assert len(report.applied) == 3
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_failure_retains_entry_and_holds_later_ones(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="A1"))
        queue.enqueue("rec-b", ChangeKind.DELETE)
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="A2"))
        applied = []

        report = await queue.drain(_recorder(applied, {"rec-a": ServerError()}))

        assert [task_id for task_id, _, _ in applied] == ["rec-b"]
        assert [c.payload.title for c in report.retained] == ["A1", "A2"]
        assert [c.payload.title for c in queue.entries] == ["A1", "A2"]
        assert queue.entries[0].attempts == 1
        assert queue.entries[1].attempts == 0

    @pytest.mark.asyncio
    async def test_connectivity_error_interrupts_without_charging(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.DELETE)
        queue.enqueue("rec-b", ChangeKind.DELETE)

        report = await queue.drain(_recorder([], {"rec-a": ConnectivityError()}))

        assert report.interrupted
        assert len(queue) == 2
        assert queue.entries[0].attempts == 0
        assert queue.entries[0].next_attempt_at is None

    @pytest.mark.asyncio
    async def test_backoff_delays_next_attempt(self, queue: PendingChangeQueue, clock: FakeClock):
        queue.enqueue("rec-a", ChangeKind.DELETE)
        applied = []

        await queue.drain(_recorder(applied, {"rec-a": ServerError()}))
        assert queue.entries[0].next_attempt_at == clock() + timedelta(seconds=2)

        # Not due yet: skipped without a new attempt
        await queue.drain(_recorder(applied))
        assert applied == []
        assert queue.entries[0].attempts == 1

        clock.advance(seconds=2)
        report = await queue.drain(_recorder(applied))
        assert report.ok
        assert applied == [("rec-a", ChangeKind.DELETE, None)]

    def test_backoff_is_exponential_and_capped(self, clock: FakeClock):
        queue = PendingChangeQueue(backoff_base=2.0, backoff_max=10.0, clock=clock)

        assert queue.backoff_delay(1) == timedelta(seconds=2)
        assert queue.backoff_delay(2) == timedelta(seconds=4)
        assert queue.backoff_delay(3) == timedelta(seconds=8)
        assert queue.backoff_delay(4) == timedelta(seconds=10)

    @pytest.mark.asyncio
    async def test_moves_to_failed_after_max_attempts(self, clock: FakeClock):
        queue = PendingChangeQueue(max_attempts=3, clock=clock)
        queue.enqueue("rec-a", ChangeKind.DELETE)
        apply = _recorder([], {"rec-a": ServerError()})

        for _ in range(3):
            report = await queue.drain(apply)
            clock.advance(minutes=10)

        assert len(queue) == 0
        assert [c.task_id for c in queue.failed] == ["rec-a"]
        assert queue.failed[0].attempts == 3
        assert report.failed == list(queue.failed)

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="A"))

        await queue.drain(_recorder([], {"rec-a": NotFoundError()}))

        assert len(queue) == 0
        assert queue.failed[0].last_error == "Record not found"

    @pytest.mark.asyncio
    async def test_failed_create_takes_later_changes_with_it(self, queue: PendingChangeQueue):
        queue.enqueue("temp-1", ChangeKind.CREATE, TaskPatch(title="New"))
        queue.enqueue("temp-1", ChangeKind.UPDATE, TaskPatch(title="Renamed"))
        queue.enqueue("rec-b", ChangeKind.DELETE)
        report = await queue.drain(_recorder([], {"temp-1": NotFoundError()}))

        assert [c.kind for c in queue.failed] == [ChangeKind.CREATE, ChangeKind.UPDATE]
        assert len(report.failed) == 2
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_drain_is_not_reentrant(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.DELETE)
        gate = asyncio.Event()

        async def slow_apply(change: PendingChange) -> None:
            await gate.wait()

        first = asyncio.ensure_future(queue.drain(slow_apply))
        await asyncio.sleep(0)
        assert queue.is_draining

        with pytest.raises(SyncInProgressError):
            await queue.drain(slow_apply)

        gate.set()
        report = await first
        assert len(report.applied) == 1
        assert not queue.is_draining


# ---------------------------------------------------------------------------
# Failed list / rewrites
# ---------------------------------------------------------------------------

class TestFailedList:
    """Tests for retry_failed / dismiss_failed"""

    @pytest.mark.asyncio
    async def test_retry_failed_resets_budget(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.DELETE)
        await queue.drain(_recorder([], {"rec-a": NotFoundError()}))

        assert queue.retry_failed() == 1
        assert len(queue.failed) == 0
        assert queue.entries[0].attempts == 0
        assert queue.entries[0].last_error is None

    @pytest.mark.asyncio
    async def test_retried_change_is_restamped_behind_newer_entries(
        self, queue: PendingChangeQueue,
    ):
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="First"))
        await queue.drain(_recorder([], {"rec-a": NotFoundError()}))
        queue.enqueue("rec-b", ChangeKind.DELETE)
        queue.enqueue("rec-a", ChangeKind.UPDATE, TaskPatch(title="Second"))

        queue.retry_failed()

        entries = queue.entries
        assert [(c.task_id, c.payload and c.payload.title) for c in entries] == [
            ("rec-b", None),
            ("rec-a", "First"),
            ("rec-a", "Second"),
        ]
        stamps = [c.created_at for c in entries]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
        assert queue.last_sequence == stamps[-1]

    @pytest.mark.asyncio
    async def test_dismiss_failed_by_task(self, queue: PendingChangeQueue):
        queue.enqueue("rec-a", ChangeKind.DELETE)
        queue.enqueue("rec-b", ChangeKind.DELETE)
        await queue.drain(_recorder([], {"rec-a": NotFoundError(), "rec-b": NotFoundError()}))

        dismissed = queue.dismiss_failed(["rec-a"])

        assert [c.task_id for c in dismissed] == ["rec-a"]
        assert [c.task_id for c in queue.failed] == ["rec-b"]

    def test_rewrite_task_id(self, queue: PendingChangeQueue):
        queue.enqueue("temp-1", ChangeKind.CREATE, TaskPatch(title="New"))
        queue.enqueue("temp-1", ChangeKind.UPDATE, TaskPatch(title="Renamed"))
        queue.enqueue("rec-b", ChangeKind.DELETE)

        assert queue.rewrite_task_id("temp-1", "rec-9") == 2
        assert [c.task_id for c in queue.entries] == ["rec-9", "rec-9", "rec-b"]

    def test_discard_task(self, queue: PendingChangeQueue):
        queue.enqueue("temp-1", ChangeKind.CREATE, TaskPatch(title="New"))
        queue.enqueue("rec-b", ChangeKind.DELETE)

        dropped = queue.discard_task("temp-1")

        assert len(dropped) == 1
        assert [c.task_id for c in queue.entries] == ["rec-b"]
