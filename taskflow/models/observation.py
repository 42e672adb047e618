"""
Observation Models
==================

Field notes recorded alongside tasks.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from taskflow.utils.helpers import Instant


class ObservationType(str, Enum):
    """What an observation is about."""
    PEST = "pest"
    DISEASE = "disease"
    GROWTH = "growth"
    WEATHER = "weather"
    OTHER = "other"


class Observation(BaseModel):
    """Observation model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    date: Instant
    photos: list[str] = Field(default_factory=list)
    type: ObservationType = ObservationType.OTHER
    observer: Optional[str] = None
    related_tasks: list[str] = Field(default_factory=list, alias="relatedTasks")

    def __repr__(self) -> str:
        return f"<Observation(id={self.id}, title={self.title[:30]})>"
