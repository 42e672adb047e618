"""
Task Schemas
============

Pydantic schemas for task creation, partial updates and remote pages.
"""

from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    model_serializer,
    model_validator,
)

from taskflow.models.task import Task, TaskImportance, TaskStatus
from taskflow.utils.helpers import Instant


# =============================================================================
# Request Schemas
# =============================================================================

class TaskCreate(BaseModel):
    """Payload for creating a task; the id is issued by the remote store."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    due_date: Instant = Field(alias="dueDate")
    completed_date: Optional[Instant] = Field(None, alias="completedDate")
    importance: TaskImportance = TaskImportance.NORMAL
    images: list[str] = Field(default_factory=list)
    is_repeating: bool = Field(False, alias="isRepeating")
    repeat_every_days: Optional[int] = Field(None, alias="repeatEveryDays", ge=1)
    assignee_id: Optional[str] = Field(None, alias="assigneeId")

    def to_task(self, task_id: str) -> Task:
        """Attach an id and build the full task."""
        return Task(id=task_id, **self.model_dump())

    @classmethod
    def from_task(cls, task: Task) -> "TaskCreate":
        return cls(**task.model_dump(exclude={"id"}))


# Fields that exist on every task and therefore may be omitted but never nulled.
_NON_NULLABLE = frozenset({
    "title",
    "description",
    "status",
    "due_date",
    "importance",
    "images",
    "is_repeating",
})


class TaskPatch(BaseModel):
    """
    Partial task update.

    Presence is tracked through ``model_fields_set``: a field that was
    never assigned is *omitted* and leaves the task untouched, while a
    field explicitly set to ``None`` clears the value.  Serialization
    only ever emits the fields that are present, so a patch survives a
    persist/reload cycle with the same presence information.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[Instant] = Field(None, alias="dueDate")
    completed_date: Optional[Instant] = Field(None, alias="completedDate")
    importance: Optional[TaskImportance] = None
    images: Optional[list[str]] = None
    is_repeating: Optional[bool] = Field(None, alias="isRepeating")
    repeat_every_days: Optional[int] = Field(None, alias="repeatEveryDays", ge=1)
    assignee_id: Optional[str] = Field(None, alias="assigneeId")

    @model_validator(mode="after")
    def _reject_null_required_fields(self) -> "TaskPatch":
        nulled = sorted(
            name for name in self.model_fields_set
            if name in _NON_NULLABLE and getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"Fields cannot be cleared: {', '.join(nulled)}")
        return self

    @model_serializer(mode="wrap")
    def _serialize_present_fields(
        self, handler: SerializerFunctionWrapHandler,
    ) -> dict[str, Any]:
        data = handler(self)
        present: set[str] = set()
        for name in self.model_fields_set:
            present.add(name)
            alias = type(self).model_fields[name].alias
            if alias:
                present.add(alias)
        return {key: value for key, value in data.items() if key in present}

    def changes(self) -> dict[str, Any]:
        """Present fields keyed by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def apply_to(self, task: Task) -> Task:
        """Return a copy of *task* with the present fields overwritten."""
        return task.model_copy(update=self.changes())

    @classmethod
    def from_task(cls, task: Task) -> "TaskPatch":
        """A patch carrying every field of *task* except its id."""
        return cls(**task.model_dump(exclude={"id"}))


# =============================================================================
# Response Schemas
# =============================================================================

class TaskPage(BaseModel):
    """One page of a remote list query."""

    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Task] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(None, alias="nextCursor")
    has_more: bool = Field(False, alias="hasMore")
