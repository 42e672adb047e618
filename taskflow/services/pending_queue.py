"""
Pending-Change Queue
====================

Ordered list of local mutations that the remote repository has not
confirmed yet.

Ordering:
    Every entry gets a logical ``created_at`` when enqueued:
    ``max(last_sequence + 1, wall-clock milliseconds)``.  The counter is
    persisted with the queue, so it keeps increasing across restarts
    even if the wall clock steps back.  Drains walk entries strictly in
    ``created_at`` order; an entry that is retained holds back every
    later entry for the same task during that run.

Retry / failed list:
    - A rejected replay bumps ``attempts`` and schedules
      ``next_attempt_at`` with exponential backoff
      (``base * 2^(attempts-1)``, capped at ``backoff_max``).
    - Entries whose error is not retryable, or that reach
      ``max_attempts``, move to the failed list for the user to retry
      or dismiss.  When a ``create`` fails for good, the later entries
      for its temporary id follow it.
    - A ``ConnectivityError`` stops the run without charging an attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

from taskflow.core.errors import ConnectivityError, SyncInProgressError, TaskflowError
from taskflow.schemas.state import ChangeKind, PendingChange
from taskflow.schemas.task import TaskPatch
from taskflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_ATTEMPTS = 5
BACKOFF_BASE_SECONDS = 2.0
BACKOFF_MAX_SECONDS = 300.0

ApplyChange = Callable[[PendingChange], Awaitable[None]]


@dataclass
class DrainReport:
    """Outcome of one drain run."""

    applied: list[PendingChange] = field(default_factory=list)
    retained: list[PendingChange] = field(default_factory=list)
    failed: list[PendingChange] = field(default_factory=list)
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        return not (self.retained or self.failed or self.interrupted)


class PendingChangeQueue:
    """Timestamp-ordered queue of unconfirmed mutations."""

    def __init__(
        self,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        backoff_max: float = BACKOFF_MAX_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._clock = clock
        self._entries: list[PendingChange] = []
        self._failed: list[PendingChange] = []
        self._last_sequence = 0
        self._draining = False

    # -- state -------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[PendingChange, ...]:
        return tuple(self._entries)

    @property
    def failed(self) -> tuple[PendingChange, ...]:
        return tuple(self._failed)

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    @property
    def is_draining(self) -> bool:
        return self._draining

    def load(
        self,
        pending: Iterable[PendingChange],
        failed: Iterable[PendingChange] = (),
        last_sequence: int = 0,
    ) -> None:
        """Restore persisted entries."""
        self._entries = sorted(pending, key=lambda change: change.created_at)
        self._failed = sorted(failed, key=lambda change: change.created_at)
        known = [change.created_at for change in self._entries + self._failed]
        self._last_sequence = max([last_sequence, *known])

    def pending_for(self, task_id: str) -> list[PendingChange]:
        return [change for change in self._entries if change.task_id == task_id]

    def has_pending(self, task_id: str, kind: Optional[ChangeKind] = None) -> bool:
        return any(
            change.task_id == task_id and (kind is None or change.kind is kind)
            for change in self._entries
        )

    # -- writes ------------------------------------------------------------

    def reserve_sequence(self) -> int:
        """Hand out the next logical timestamp."""
        wall_ms = int(self._clock().timestamp() * 1000)
        self._last_sequence = max(self._last_sequence + 1, wall_ms)
        return self._last_sequence

    def enqueue(
        self,
        task_id: str,
        kind: ChangeKind,
        payload: Optional[TaskPatch] = None,
    ) -> PendingChange:
        """Append a change stamped with a fresh ``created_at``."""
        change = PendingChange(
            task_id=task_id,
            kind=kind,
            payload=payload,
            created_at=self.reserve_sequence(),
        )
        self._entries.append(change)
        logger.debug(
            "Queued %s for task %s (createdAt=%d)",
            kind.value,
            task_id,
            change.created_at,
        )
        return change

    def rewrite_task_id(self, old_id: str, new_id: str) -> int:
        """Point every entry (pending and failed) at the durable id."""
        touched = 0
        for change in self._entries + self._failed:
            if change.task_id == old_id:
                change.task_id = new_id
                touched += 1
        return touched

    def discard_task(self, task_id: str) -> list[PendingChange]:
        """Remove every pending and failed entry for *task_id*."""
        dropped = [c for c in self._entries + self._failed if c.task_id == task_id]
        self._entries = [c for c in self._entries if c.task_id != task_id]
        self._failed = [c for c in self._failed if c.task_id != task_id]
        return dropped

    def retry_failed(self, task_ids: Optional[Iterable[str]] = None) -> int:
        """
        Move failed entries back into the queue with a clean retry budget.

        A retried change is sent again as if it had just been made: it
        gets a fresh ``created_at`` and overwrites whatever reached the
        remote for that task in the meantime.  Entries still pending for
        the same task are re-stamped after it so they keep following it.
        """
        wanted = set(task_ids) if task_ids is not None else None
        revived: list[PendingChange] = []
        kept: list[PendingChange] = []
        for change in self._failed:
            if wanted is None or change.task_id in wanted:
                change.attempts = 0
                change.next_attempt_at = None
                change.last_error = None
                revived.append(change)
            else:
                kept.append(change)
        self._failed = kept

        revived.sort(key=lambda c: c.created_at)
        touched = {change.task_id for change in revived}
        followers = [c for c in self._entries if c.task_id in touched]
        for change in revived + followers:
            change.created_at = self.reserve_sequence()
        self._entries = sorted(self._entries + revived, key=lambda c: c.created_at)
        return len(revived)

    def dismiss_failed(self, task_ids: Optional[Iterable[str]] = None) -> list[PendingChange]:
        """Drop failed entries for good."""
        wanted = set(task_ids) if task_ids is not None else None
        dismissed = [c for c in self._failed if wanted is None or c.task_id in wanted]
        self._failed = [c for c in self._failed if not (wanted is None or c.task_id in wanted)]
        return dismissed

    # -- drain -------------------------------------------------------------

    def backoff_delay(self, attempts: int) -> timedelta:
        seconds = self.backoff_base * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.backoff_max))

    async def drain(self, apply: ApplyChange) -> DrainReport:
        """
        Replay queued changes oldest first through *apply*.

        Successful entries are removed; the rest stay in their original
        relative order.  Raises ``SyncInProgressError`` if a drain is
        already running.
        """
        if self._draining:
            raise SyncInProgressError()

        report = DrainReport()
        if not self._entries:
            return report

        self._draining = True
        try:
            now = self._clock()
            held: set[str] = set()
            for change in list(self._entries):
                if change.task_id in held:
                    continue
                if change.next_attempt_at is not None and change.next_attempt_at > now:
                    held.add(change.task_id)
                    continue

                try:
                    await apply(change)
                except ConnectivityError as exc:
                    logger.warning(
                        "Drain interrupted at %s for task %s: %s",
                        change.kind.value,
                        change.task_id,
                        exc,
                    )
                    report.interrupted = True
                    break
                except TaskflowError as exc:
                    held.add(change.task_id)
                    self._record_failure(change, exc, report)
                    continue

                self._remove(change)
                report.applied.append(change)
        finally:
            self._draining = False

        report.retained = list(self._entries)
        if report.applied:
            logger.info("Synced %d pending change(s)", len(report.applied))
        return report

    def _remove(self, change: PendingChange) -> None:
        self._entries = [c for c in self._entries if c is not change]

    def _record_failure(
        self,
        change: PendingChange,
        exc: TaskflowError,
        report: DrainReport,
    ) -> None:
        change.attempts += 1
        change.last_error = exc.message

        if exc.retryable and change.attempts < self.max_attempts:
            change.next_attempt_at = self._clock() + self.backoff_delay(change.attempts)
            logger.warning(
                "Sync of %s for task %s failed (attempt %d/%d), retrying after %s: %s",
                change.kind.value,
                change.task_id,
                change.attempts,
                self.max_attempts,
                change.next_attempt_at.isoformat(),
                exc.message,
            )
            return

        self._move_to_failed(change, report)
        logger.warning(
            "Gave up on %s for task %s after %d attempt(s): %s",
            change.kind.value,
            change.task_id,
            change.attempts,
            exc.message,
        )
        if change.kind is ChangeKind.CREATE:
            for orphan in self.pending_for(change.task_id):
                orphan.last_error = "Task was never created remotely"
                self._move_to_failed(orphan, report)

    def _move_to_failed(self, change: PendingChange, report: DrainReport) -> None:
        self._remove(change)
        change.next_attempt_at = None
        self._failed.append(change)
        report.failed.append(change)
