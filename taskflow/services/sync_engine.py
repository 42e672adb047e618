"""
Task Sync Engine
================

Keeps the local task view consistent with the remote repository under
intermittent connectivity.

States:
    SYNCED          connected, nothing in flight
    SYNCING         a refresh, drain or online mutation is in flight
    CACHED_OFFLINE  disconnected, serving a cached snapshot
    UNAVAILABLE     disconnected, no snapshot for the active filter

Online mutations are committed directly and followed by a full refresh
of the active filter; rejections propagate and nothing is queued.  A
task that still has queued changes is the exception: its mutation joins
the queue behind them and the queue is drained, so the remote sees the
edits in the order they were made.  Offline mutations are applied optimistically to the view and cache and
recorded in the pending-change queue.  On reconnect the queue is
drained oldest first, then the active filter is re-fetched.

Tasks created offline get a ``temp-<n>`` id and a queued ``create``
change carrying the full record.  Replaying it calls
``repository.create`` and rewrites every local reference (view, cache
snapshots, selection, queued changes) to the durable id.

Every repository call is bounded by ``timeout_seconds``; a timeout is a
``ConnectivityError``.  A refresh for a filter cancels any older refresh
for the same filter still in flight, and only the latest one may write
to the cache.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from taskflow.core.errors import (
    ConnectivityError,
    ErrorCodes,
    NoCacheAvailable,
    NotFoundError,
    ReconciliationError,
    TaskflowError,
    TaskNotFoundError,
)
from taskflow.models.task import TEMP_ID_PREFIX, FilterKey, Task, is_temporary_id
from taskflow.schemas.state import ChangeKind, PendingChange, PersistedState
from taskflow.schemas.task import TaskCreate, TaskPatch
from taskflow.services.pending_queue import DrainReport, PendingChangeQueue
from taskflow.services.repository import TaskRepository
from taskflow.services.task_cache import TaskCache
from taskflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0


class SyncState(str, Enum):
    """Connectivity / freshness state of the engine."""
    SYNCED = "synced"
    SYNCING = "syncing"
    CACHED_OFFLINE = "cached_offline"
    UNAVAILABLE = "unavailable"


class SyncEngine:
    """Orchestrates the cache, the pending-change queue and the repository."""

    def __init__(
        self,
        repository: TaskRepository,
        cache: Optional[TaskCache] = None,
        queue: Optional[PendingChangeQueue] = None,
        *,
        active_filter: FilterKey = FilterKey.TODAY,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        online: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.cache = cache if cache is not None else TaskCache(clock=clock)
        self.queue = queue if queue is not None else PendingChangeQueue(clock=clock)
        self.active_filter = active_filter
        self.timeout_seconds = timeout_seconds
        self.last_drain: Optional[DrainReport] = None

        self._clock = clock
        self._online = online
        self._offline_state = SyncState.UNAVAILABLE
        self._busy = 0
        self._view: list[Task] = []
        self._selected_task_id: Optional[str] = None
        self._id_map: dict[str, str] = {}
        self._refreshes: dict[FilterKey, asyncio.Task] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        if not online:
            self._offline_state = self._offline_state_for(active_filter)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def online(self) -> bool:
        return self._online

    @property
    def state(self) -> SyncState:
        if not self._online:
            return self._offline_state
        return SyncState.SYNCING if self._busy else SyncState.SYNCED

    @property
    def tasks(self) -> list[Task]:
        """The visible list for the active filter."""
        return list(self._view)

    @property
    def selected_task_id(self) -> Optional[str]:
        return self._selected_task_id

    @property
    def pending_changes(self) -> tuple[PendingChange, ...]:
        return self.queue.entries

    @property
    def failed_changes(self) -> tuple[PendingChange, ...]:
        return self.queue.failed

    def resolve_id(self, task_id: str) -> str:
        """Follow a reconciled temporary id to its durable id."""
        return self._id_map.get(task_id, task_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        """Look a task up in the view first, then in any cached snapshot."""
        task_id = self.resolve_id(task_id)
        for task in self._view:
            if task.id == task_id:
                return task
        for entry in self.cache.entries().values():
            for task in entry.snapshot:
                if task.id == task_id:
                    return task
        return None

    def select(self, task_id: Optional[str]) -> None:
        self._selected_task_id = self.resolve_id(task_id) if task_id else None

    # =========================================================================
    # Persistence
    # =========================================================================

    def export_state(self) -> PersistedState:
        return PersistedState(
            active_filter=self.active_filter,
            tasks=list(self._view),
            selected_task_id=self._selected_task_id,
            cache=self.cache.entries(),
            pending=list(self.queue.entries),
            failed=list(self.queue.failed),
            last_sequence=self.queue.last_sequence,
        )

    def restore(self, state: PersistedState) -> None:
        """Load a persisted snapshot; cache timestamps are kept as stored."""
        self.active_filter = state.active_filter
        self._view = list(state.tasks)
        self._selected_task_id = state.selected_task_id
        self.cache.load(state.cache)
        self.queue.load(state.pending, state.failed, state.last_sequence)
        if not self._online:
            self._offline_state = self._offline_state_for(self.active_filter)
        logger.info(
            "Restored %d task(s), %d cache entr(ies), %d pending change(s)",
            len(self._view),
            len(state.cache),
            len(state.pending),
        )

    # =========================================================================
    # Connectivity
    # =========================================================================

    def connection_lost(self) -> SyncState:
        """Switch to offline mode, keeping whatever snapshot is on screen."""
        if self._online:
            self._online = False
            for fetch in self._refreshes.values():
                fetch.cancel()
            logger.info("Connection lost")
        self._offline_state = self._offline_state_for(self.active_filter)
        return self.state

    async def connection_restored(self) -> DrainReport:
        """
        Go back online: drain the queue, then re-fetch the active filter.

        Overlapping calls share the same run.
        """
        if self._reconnect_task is None or self._reconnect_task.done():
            self._online = True
            logger.info("Connection restored, syncing")
            self._reconnect_task = asyncio.ensure_future(self._resync())
        return await asyncio.shield(self._reconnect_task)

    async def _resync(self) -> DrainReport:
        self._busy += 1
        try:
            report = await self.drain()
            if report.interrupted:
                self.connection_lost()
                return report
            await self.refresh(self.active_filter)
            return report
        except ConnectivityError:
            self.connection_lost()
            raise
        finally:
            self._busy -= 1

    # =========================================================================
    # Reads
    # =========================================================================

    async def set_active_filter(self, filter_key: FilterKey) -> list[Task]:
        self.active_filter = filter_key
        return await self.refresh(filter_key)

    async def refresh(self, filter_key: Optional[FilterKey] = None) -> list[Task]:
        """
        Replace the snapshot for *filter_key* (default: the active filter).

        Offline, a fresh (or never-expiring) cached snapshot is served
        instead; without one ``NoCacheAvailable`` is raised.
        """
        key = filter_key or self.active_filter
        if not self._online:
            return self._serve_offline(key)

        previous = self._refreshes.get(key)
        if previous is not None and not previous.done():
            logger.info("Superseding in-flight refresh for %s", key.value)
            previous.cancel()

        # The last fetch per key is kept after it finishes so superseded
        # callers can still pick up its result.
        fetch = asyncio.ensure_future(self._fetch_and_commit(key))
        self._refreshes[key] = fetch
        self._busy += 1
        try:
            return await self._await_latest(key, fetch)
        finally:
            self._busy -= 1

    async def _await_latest(self, key: FilterKey, fetch: asyncio.Task) -> list[Task]:
        while True:
            try:
                return await fetch
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                latest = self._refreshes.get(key)
                if latest is not None and latest is not fetch:
                    fetch = latest
                    continue
                if not self._online:
                    raise ConnectivityError("Connection lost during refresh") from None
                raise

    async def _fetch_and_commit(self, key: FilterKey) -> list[Task]:
        tasks = await self._fetch_all(key)
        # Nothing awaits past this point, so readers see the old or the new
        # snapshot, never a mix.
        self.cache.put(key, tasks)
        if key is self.active_filter:
            self._view = list(tasks)
        logger.debug("Refreshed %s: %d task(s)", key.value, len(tasks))
        return list(tasks)

    async def _fetch_all(self, key: FilterKey) -> list[Task]:
        collected: dict[str, Task] = {}
        cursor: Optional[str] = None
        while True:
            page = await self._call("list", self.repository.list(key, cursor))
            for task in page.tasks:
                collected.setdefault(task.id, task)
            if not page.has_more or not page.next_cursor:
                return list(collected.values())
            cursor = page.next_cursor

    def _serve_offline(self, key: FilterKey) -> list[Task]:
        snapshot = self.cache.get(key)
        if snapshot is None:
            if key is self.active_filter:
                self._view = []
                self._offline_state = SyncState.UNAVAILABLE
            raise NoCacheAvailable(key.value)
        if key is self.active_filter:
            self._view = list(snapshot)
            self._offline_state = SyncState.CACHED_OFFLINE
        return snapshot

    def _offline_state_for(self, key: FilterKey) -> SyncState:
        if self.cache.peek(key) is not None:
            return SyncState.CACHED_OFFLINE
        return SyncState.UNAVAILABLE

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create(self, data: TaskCreate) -> str:
        """Create a task; returns the durable id, or a temporary id when offline."""
        if self._online:
            task_id = await self._commit("create", self.repository.create(data))
            await self._refresh_after_commit()
            return task_id

        task = data.to_task(f"{TEMP_ID_PREFIX}{self.queue.reserve_sequence()}")
        self.queue.enqueue(task.id, ChangeKind.CREATE, TaskPatch.from_task(task))
        self._view.append(task)
        self.cache.add_task(self.active_filter, task)
        logger.info("Created task %s offline", task.id)
        return task.id

    async def update(self, task_id: str, patch: TaskPatch) -> Task:
        """
        Apply *patch* to a task.

        A task that still has a temporary id, or that has older queued
        changes, is routed through the queue behind them.  Online, the
        queue is then drained so the change still goes out right away.
        """
        task_id = self.resolve_id(task_id)
        current = self.get_task(task_id)
        if current is None:
            raise TaskNotFoundError(task_id)
        if patch.is_empty():
            return current
        updated = patch.apply_to(current)

        if self._online and not self._queued_behind(task_id):
            await self._commit("update", self.repository.update(task_id, patch))
            # The refresh only covers the active filter; other snapshots
            # get the committed copy here.
            self._apply_locally(updated)
            await self._refresh_after_commit()
            return self._visible(task_id) or updated

        self._apply_locally(updated)
        self.queue.enqueue(task_id, ChangeKind.UPDATE, patch)
        await self._drain_if_online()
        return self._visible(self.resolve_id(task_id)) or updated

    async def delete(self, task_id: str) -> None:
        """
        Delete a task.

        Offline the task disappears from the view immediately.  A task
        that was never created remotely just has its queued changes
        dropped.
        """
        task_id = self.resolve_id(task_id)

        if is_temporary_id(task_id):
            self._forget(task_id)
            dropped = self.queue.discard_task(task_id)
            logger.info("Dropped %d queued change(s) for unsynced task %s", len(dropped), task_id)
            return

        if self._online and not self._queued_behind(task_id):
            await self._commit("delete", self.repository.delete(task_id))
            self._forget(task_id)
            await self._refresh_after_commit()
            return

        self._forget(task_id)
        self.queue.enqueue(task_id, ChangeKind.DELETE)
        await self._drain_if_online()

    def _queued_behind(self, task_id: str) -> bool:
        return is_temporary_id(task_id) or self.queue.has_pending(task_id)

    def _visible(self, task_id: str) -> Optional[Task]:
        for task in self._view:
            if task.id == task_id:
                return task
        return None

    async def _drain_if_online(self) -> None:
        # A running drain works from the entries it started with; the new
        # one goes out on the next pass.
        if not self._online or self.queue.is_draining:
            return
        report = await self.drain()
        if report.interrupted:
            self.connection_lost()

    async def _commit(self, operation: str, call: Awaitable[T]) -> T:
        self._busy += 1
        try:
            return await self._call(operation, call)
        finally:
            self._busy -= 1

    async def _refresh_after_commit(self) -> None:
        # The mutation is already durable; a failed refresh only leaves the
        # previous snapshot on screen.
        try:
            await self.refresh(self.active_filter)
        except TaskflowError as exc:
            logger.warning("Refresh after commit failed: %s", exc.message)

    def _apply_locally(self, task: Task) -> None:
        self._view = [task if cached.id == task.id else cached for cached in self._view]
        self.cache.replace_task(task)

    def _forget(self, task_id: str) -> None:
        self._view = [task for task in self._view if task.id != task_id]
        self.cache.remove_task(task_id)
        if self._selected_task_id == task_id:
            self._selected_task_id = None

    # =========================================================================
    # Drain / reconciliation
    # =========================================================================

    async def drain(self) -> DrainReport:
        """Replay the queue once; concurrent callers join the running drain."""
        if self._drain_task is not None and not self._drain_task.done():
            logger.debug("Joining in-flight drain")
            return await asyncio.shield(self._drain_task)
        if len(self.queue) == 0:
            return DrainReport()

        self._drain_task = asyncio.ensure_future(self.queue.drain(self._replay))
        self._busy += 1
        try:
            report = await asyncio.shield(self._drain_task)
        finally:
            self._busy -= 1
        self.last_drain = report
        if report.failed:
            logger.warning("%d change(s) could not be synced", len(report.failed))
        return report

    async def _replay(self, change: PendingChange) -> None:
        if change.kind is ChangeKind.CREATE:
            data = TaskCreate.model_validate(change.payload.changes())
            durable_id = await self._call("create", self.repository.create(data))
            self._reconcile(change.task_id, durable_id)
            return

        if is_temporary_id(change.task_id):
            raise ReconciliationError(change.task_id)

        if change.kind is ChangeKind.UPDATE:
            await self._call("update", self.repository.update(change.task_id, change.payload))
            return

        try:
            await self._call("delete", self.repository.delete(change.task_id))
        except NotFoundError:
            logger.info("Task %s was already deleted remotely", change.task_id)

    def _reconcile(self, temp_id: str, durable_id: str) -> None:
        """Rewrite every local reference from *temp_id* to *durable_id*."""
        self._id_map[temp_id] = durable_id
        self.queue.rewrite_task_id(temp_id, durable_id)
        self.cache.rewrite_task_id(temp_id, durable_id)
        if any(task.id == durable_id for task in self._view):
            self._view = [task for task in self._view if task.id != temp_id]
        else:
            self._view = [
                task.model_copy(update={"id": durable_id}) if task.id == temp_id else task
                for task in self._view
            ]
        if self._selected_task_id == temp_id:
            self._selected_task_id = durable_id
        logger.info("Reconciled %s -> %s", temp_id, durable_id)

    # =========================================================================
    # Remote calls
    # =========================================================================

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ConnectivityError(
                f"Remote {operation} timed out after {self.timeout_seconds:g}s",
                code=ErrorCodes.TIMEOUT,
            ) from exc
