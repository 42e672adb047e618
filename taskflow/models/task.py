"""
Task Models
===========

Domain model for tasks plus the enumerations shared by the cache,
the pending-change queue and the remote repository.
"""

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from taskflow.utils.helpers import Instant

# Prefix of locally-minted ids that the remote store has never seen.
TEMP_ID_PREFIX = "temp-"


# =============================================================================
# Enums
# =============================================================================

class TaskStatus(str, Enum):
    """Task workflow status."""
    TODO = "To do"
    IN_PROGRESS = "In progress"
    DONE = "Done"


class TaskImportance(str, Enum):
    """Task importance level."""
    NORMAL = "normal"
    URGENT = "urgent"


class FilterKey(str, Enum):
    """Named query shapes; each one scopes a cache entry and a remote list."""
    TODAY = "today"
    UPCOMING = "upcoming"
    ALL = "all"


class CacheDuration(str, Enum):
    """How long a cached snapshot is trusted."""
    FIVE_MINUTES = "5min"
    TWELVE_HOURS = "12h"
    INFINITE = "infinite"

    @property
    def ttl(self) -> Optional[timedelta]:
        """Time-to-live, or ``None`` for snapshots that never expire."""
        if self is CacheDuration.FIVE_MINUTES:
            return timedelta(minutes=5)
        if self is CacheDuration.TWELVE_HOURS:
            return timedelta(hours=12)
        return None


def is_temporary_id(task_id: str) -> bool:
    """True for ids minted locally while disconnected."""
    return task_id.startswith(TEMP_ID_PREFIX)


# =============================================================================
# Models
# =============================================================================

class Task(BaseModel):
    """
    Task model.

    Uses camelCase aliases on the wire (``dueDate``, ``isRepeating`` ...)
    and snake_case attributes in Python.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    due_date: Instant = Field(alias="dueDate")
    completed_date: Optional[Instant] = Field(None, alias="completedDate")
    importance: TaskImportance = TaskImportance.NORMAL
    images: list[str] = Field(default_factory=list)
    is_repeating: bool = Field(False, alias="isRepeating")
    repeat_every_days: Optional[int] = Field(None, alias="repeatEveryDays", ge=1)
    assignee_id: Optional[str] = Field(None, alias="assigneeId")

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title={self.title[:30]})>"

    @property
    def is_temporary(self) -> bool:
        """Whether the task still waits for its durable remote id."""
        return is_temporary_id(self.id)

    @property
    def repeats(self) -> bool:
        """Completion reschedules instead of finishing the task."""
        return self.is_repeating and bool(self.repeat_every_days)
