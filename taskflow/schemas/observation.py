"""
Observation Schemas
===================

Payloads for creating and editing observations, and one page of
observations from the remote store.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from taskflow.models.observation import Observation, ObservationType
from taskflow.utils.helpers import Instant


class ObservationCreate(BaseModel):
    """Payload for recording an observation."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    date: Instant
    photos: list[str] = Field(default_factory=list)
    type: ObservationType = ObservationType.OTHER
    observer: Optional[str] = None
    related_tasks: list[str] = Field(default_factory=list, alias="relatedTasks")

    def to_observation(self, observation_id: str) -> Observation:
        return Observation(id=observation_id, **self.model_dump())


class ObservationPatch(BaseModel):
    """Partial observation update; only assigned fields are applied."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    date: Optional[Instant] = None
    photos: Optional[list[str]] = None
    type: Optional[ObservationType] = None
    observer: Optional[str] = None
    related_tasks: Optional[list[str]] = Field(None, alias="relatedTasks")

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def apply_to(self, observation: Observation) -> Observation:
        return observation.model_copy(update=self.changes())


class ObservationPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    observations: list[Observation] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(None, alias="nextCursor")
    has_more: bool = Field(False, alias="hasMore")
