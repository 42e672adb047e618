"""
Sync State Schemas
==================

Pending changes, cache entries and the persisted snapshot of the whole
sync engine.

``encode_state`` / ``decode_state`` are the only way state crosses the
persistence boundary; instants are written as ISO 8601 with a UTC
offset and read back as the identical instant.
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from taskflow.models.task import FilterKey, Task
from taskflow.schemas.task import TaskPatch
from taskflow.utils.helpers import Instant

STATE_VERSION = 1


class ChangeKind(str, Enum):
    """Kind of mutation recorded while disconnected."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingChange(BaseModel):
    """
    A local mutation awaiting replay against the remote repository.

    ``created_at`` is a logical, strictly increasing timestamp and the
    total order key of the queue.  ``attempts`` / ``next_attempt_at``
    carry the retry schedule after rejected replays.
    """

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    kind: ChangeKind
    payload: Optional[TaskPatch] = None
    created_at: int = Field(alias="createdAt")
    attempts: int = Field(0, ge=0)
    next_attempt_at: Optional[Instant] = Field(None, alias="nextAttemptAt")
    last_error: Optional[str] = Field(None, alias="lastError")

    @model_validator(mode="after")
    def _require_payload(self) -> "PendingChange":
        if self.kind is not ChangeKind.DELETE and self.payload is None:
            raise ValueError(f"{self.kind.value} changes require a payload")
        return self


class CacheEntry(BaseModel):
    """Most recent snapshot for one filter key."""

    model_config = ConfigDict(populate_by_name=True)

    filter_key: FilterKey = Field(alias="filterKey")
    snapshot: list[Task] = Field(default_factory=list)
    fetched_at: Instant = Field(alias="fetchedAt")


class PersistedState(BaseModel):
    """Everything that has to survive a process restart."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = STATE_VERSION
    active_filter: FilterKey = Field(FilterKey.TODAY, alias="activeFilter")
    tasks: list[Task] = Field(default_factory=list)
    selected_task_id: Optional[str] = Field(None, alias="selectedTaskId")
    cache: dict[FilterKey, CacheEntry] = Field(default_factory=dict)
    pending: list[PendingChange] = Field(default_factory=list)
    failed: list[PendingChange] = Field(default_factory=list)
    last_sequence: int = Field(0, alias="lastSequence", ge=0)


def encode_state(state: PersistedState) -> str:
    """Serialize engine state to JSON."""
    return state.model_dump_json(by_alias=True)


def decode_state(raw: Union[str, bytes]) -> PersistedState:
    """Parse JSON produced by ``encode_state``."""
    return PersistedState.model_validate_json(raw)
