"""
Task Store
==========

The surface the rest of the application talks to.  Wraps the sync
engine, the business rules in ``taskflow.core.scheduling`` and the
state store, and exposes task CRUD plus status / delay / repeat
operations.

Lifecycle::

    store = TaskStore.from_settings(settings, repository)
    await store.start()      # restore persisted state
    ...
    await store.close()      # persist and release the state store

Every mutation persists the engine state afterwards (``autosave``) so
queued offline changes survive a restart.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from taskflow.config import Settings
from taskflow.core.errors import ConnectivityError, TaskflowError, TaskNotFoundError
from taskflow.core.scheduling import delay_patch, status_patch
from taskflow.models.task import CacheDuration, FilterKey, Task, TaskStatus
from taskflow.schemas.state import PendingChange
from taskflow.schemas.task import TaskCreate, TaskPatch
from taskflow.services.pending_queue import DrainReport, PendingChangeQueue
from taskflow.services.repository import TaskRepository
from taskflow.services.state_store import StateStore
from taskflow.services.sync_engine import SyncEngine, SyncState
from taskflow.services.task_cache import TaskCache
from taskflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class TaskStore:
    """Task façade over the sync engine."""

    def __init__(
        self,
        engine: SyncEngine,
        state_store: Optional[StateStore] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        autosave: bool = True,
    ) -> None:
        self.engine = engine
        self.state_store = state_store
        self.autosave = autosave
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: TaskRepository,
        state_store: Optional[StateStore] = None,
        *,
        online: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> "TaskStore":
        """Wire cache, queue and engine from configuration."""
        cache = TaskCache(duration=settings.CACHE_DURATION, clock=clock)
        queue = PendingChangeQueue(
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            backoff_base=settings.SYNC_BACKOFF_BASE_SECONDS,
            backoff_max=settings.SYNC_BACKOFF_MAX_SECONDS,
            clock=clock,
        )
        engine = SyncEngine(
            repository,
            cache,
            queue,
            active_filter=settings.ACTIVE_FILTER,
            timeout_seconds=settings.REMOTE_TIMEOUT_SECONDS,
            online=online,
            clock=clock,
        )
        return cls(engine, state_store, clock=clock)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Restore persisted state, if any.

        Changes queued before the last shutdown are replayed before
        anything is fetched, the same way a reconnect does it.
        """
        if self.state_store is None:
            return
        state = await self.state_store.load()
        if state is None:
            return
        self.engine.restore(state)
        if not (self.engine.online and self.engine.pending_changes):
            return
        try:
            await self.engine.connection_restored()
        except ConnectivityError as exc:
            logger.warning("Starting offline, queued changes kept: %s", exc.message)
        except TaskflowError as exc:
            logger.error("Refresh after replaying queued changes failed: %s", exc.message)
        await self._persist()

    async def save(self) -> bool:
        if self.state_store is None:
            return False
        return await self.state_store.save(self.engine.export_state())

    async def close(self) -> None:
        if self.state_store is None:
            return
        await self.save()
        await self.state_store.close()

    async def _persist(self) -> None:
        if self.autosave:
            await self.save()

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def tasks(self) -> list[Task]:
        return self.engine.tasks

    @property
    def state(self) -> SyncState:
        return self.engine.state

    @property
    def online(self) -> bool:
        return self.engine.online

    @property
    def active_filter(self) -> FilterKey:
        return self.engine.active_filter

    @property
    def cache_duration(self) -> CacheDuration:
        return self.engine.cache.duration

    @property
    def selected_task(self) -> Optional[Task]:
        task_id = self.engine.selected_task_id
        return self.engine.get_task(task_id) if task_id else None

    @property
    def pending_changes(self) -> tuple[PendingChange, ...]:
        return self.engine.pending_changes

    @property
    def failed_changes(self) -> tuple[PendingChange, ...]:
        return self.engine.failed_changes

    def get_task(self, task_id: str) -> Task:
        task = self.engine.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_tasks(self, filter_key: Optional[FilterKey] = None) -> list[Task]:
        """Switch to *filter_key* (when given) and fetch it."""
        try:
            if filter_key is not None and filter_key is not self.engine.active_filter:
                return await self.engine.set_active_filter(filter_key)
            return await self.engine.refresh()
        finally:
            await self._persist()

    async def refresh_tasks(self) -> list[Task]:
        return await self.load_tasks()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def add_task(self, data: TaskCreate) -> str:
        task_id = await self.engine.create(data)
        await self._persist()
        logger.info("Added task %s", task_id)
        return task_id

    async def update_task(self, task_id: str, changes: TaskPatch | dict[str, Any]) -> Task:
        patch = changes if isinstance(changes, TaskPatch) else TaskPatch.model_validate(changes)
        task = await self.engine.update(task_id, patch)
        await self._persist()
        return task

    async def update_task_status(self, task_id: str, status: TaskStatus) -> Task:
        task = self.get_task(task_id)
        return await self.update_task(task.id, status_patch(task, status, self._clock()))

    async def complete_task(self, task_id: str) -> Task:
        return await self.update_task_status(task_id, TaskStatus.DONE)

    async def delay_task(self, task_id: str, days: int) -> Task:
        task = self.get_task(task_id)
        return await self.update_task(task.id, delay_patch(task, days))

    async def set_repeat(self, task_id: str, every_days: Optional[int]) -> Task:
        """Make a task repeat every *every_days* days, or stop repeating with ``None``."""
        if every_days is None:
            patch = TaskPatch(is_repeating=False, repeat_every_days=None)
        else:
            patch = TaskPatch(is_repeating=True, repeat_every_days=every_days)
        return await self.update_task(task_id, patch)

    async def delete_task(self, task_id: str) -> None:
        await self.engine.delete(task_id)
        await self._persist()
        logger.info("Deleted task %s", task_id)

    def select_task(self, task_id: Optional[str]) -> Optional[Task]:
        self.engine.select(task_id)
        return self.selected_task

    # =========================================================================
    # Connectivity / sync
    # =========================================================================

    async def set_online(self, online: bool) -> SyncState:
        """Feed a connectivity event into the engine."""
        if online:
            await self.engine.connection_restored()
        else:
            self.engine.connection_lost()
        await self._persist()
        return self.engine.state

    async def sync_pending_changes(self) -> DrainReport:
        """Replay queued changes now, then refresh the active filter."""
        if not self.engine.online:
            return DrainReport(retained=list(self.engine.pending_changes), interrupted=True)
        try:
            report = await self.engine.drain()
            if self.engine.online and not report.interrupted:
                await self.engine.refresh()
            return report
        finally:
            await self._persist()

    async def retry_failed_changes(self, task_ids: Optional[Iterable[str]] = None) -> int:
        revived = self.engine.queue.retry_failed(task_ids)
        await self._persist()
        return revived

    async def dismiss_failed_changes(
        self, task_ids: Optional[Iterable[str]] = None,
    ) -> list[PendingChange]:
        dismissed = self.engine.queue.dismiss_failed(task_ids)
        await self._persist()
        return dismissed

    def set_cache_duration(self, duration: CacheDuration) -> None:
        self.engine.cache.duration = duration
