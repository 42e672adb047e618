"""
Task Cache Store
================

Per-filter snapshots of the remote task list with bounded freshness.

Data model:
    entries[filter_key] -> CacheEntry {filter_key, snapshot, fetched_at}

Each successful refresh replaces the whole entry for its key; entries
are never merged.  ``get`` only answers with a snapshot while it is
fresh (``now - fetched_at < ttl``); ``peek`` returns the entry whatever
its age so an offline client can keep showing the last known list.

Optimistic local edits (``replace_task``, ``add_task``, ``remove_task``,
``rewrite_task_id``) patch snapshots in place and never move
``fetched_at``, so they cannot make an old snapshot look fresh.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from taskflow.models.task import CacheDuration, FilterKey, Task
from taskflow.schemas.state import CacheEntry
from taskflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class TaskCache:
    """In-memory cache store keyed by filter."""

    def __init__(
        self,
        duration: CacheDuration = CacheDuration.TWELVE_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.duration = duration
        self._clock = clock
        self._entries: dict[FilterKey, CacheEntry] = {}

    # ---- reads -----------------------------------------------------------

    def is_fresh(self, entry: CacheEntry) -> bool:
        """Whether *entry* is still within the configured TTL."""
        ttl = self.duration.ttl
        if ttl is None:
            return True
        return self._clock() - entry.fetched_at < ttl

    def get(self, filter_key: FilterKey) -> Optional[list[Task]]:
        """
        Return the snapshot for *filter_key* if it is fresh.

        Returns ``None`` when there is no entry or it has expired.
        """
        entry = self._entries.get(filter_key)
        if entry is None:
            return None
        if not self.is_fresh(entry):
            logger.debug("Cache entry for %s is stale", filter_key.value)
            return None
        return list(entry.snapshot)

    def peek(self, filter_key: FilterKey) -> Optional[CacheEntry]:
        """Return the entry for *filter_key* regardless of freshness."""
        return self._entries.get(filter_key)

    def entries(self) -> dict[FilterKey, CacheEntry]:
        return dict(self._entries)

    # ---- writes ----------------------------------------------------------

    def put(self, filter_key: FilterKey, snapshot: Iterable[Task]) -> CacheEntry:
        """Replace the entry for *filter_key*, stamping ``fetched_at = now``."""
        entry = CacheEntry(
            filter_key=filter_key,
            snapshot=list(snapshot),
            fetched_at=self._clock(),
        )
        self._entries[filter_key] = entry
        return entry

    def load(self, entries: dict[FilterKey, CacheEntry]) -> None:
        """Restore persisted entries, keeping their original ``fetched_at``."""
        self._entries = dict(entries)

    def clear(self) -> None:
        self._entries.clear()

    # ---- local edits -----------------------------------------------------

    def replace_task(self, task: Task) -> int:
        """
        Overwrite *task* in every snapshot that holds it.

        Returns the number of snapshots touched.
        """
        touched = 0
        for entry in self._entries.values():
            for index, cached in enumerate(entry.snapshot):
                if cached.id == task.id:
                    entry.snapshot[index] = task
                    touched += 1
        return touched

    def add_task(self, filter_key: FilterKey, task: Task) -> bool:
        """Append *task* to the snapshot for *filter_key*, if one exists."""
        entry = self._entries.get(filter_key)
        if entry is None:
            return False
        if any(cached.id == task.id for cached in entry.snapshot):
            return False
        entry.snapshot.append(task)
        return True

    def remove_task(self, task_id: str) -> int:
        """Drop *task_id* from every snapshot.  Returns snapshots touched."""
        touched = 0
        for entry in self._entries.values():
            kept = [cached for cached in entry.snapshot if cached.id != task_id]
            if len(kept) != len(entry.snapshot):
                entry.snapshot = kept
                touched += 1
        return touched

    def rewrite_task_id(self, old_id: str, new_id: str) -> int:
        """
        Swap a temporary id for the durable one in every snapshot.

        If a snapshot already holds *new_id* the temporary copy is dropped
        so ids stay unique.
        """
        touched = 0
        for entry in self._entries.values():
            if not any(cached.id == old_id for cached in entry.snapshot):
                continue
            if any(cached.id == new_id for cached in entry.snapshot):
                entry.snapshot = [c for c in entry.snapshot if c.id != old_id]
            else:
                entry.snapshot = [
                    c.model_copy(update={"id": new_id}) if c.id == old_id else c
                    for c in entry.snapshot
                ]
            touched += 1
        return touched
