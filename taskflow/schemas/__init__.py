"""
Pydantic Schemas
================

Payload, queue and persistence schemas.
"""

from taskflow.schemas.fuel import FuelOperationCreate, FuelPage
from taskflow.schemas.observation import ObservationCreate, ObservationPage, ObservationPatch
from taskflow.schemas.task import TaskCreate, TaskPage, TaskPatch
from taskflow.schemas.state import (
    CacheEntry,
    ChangeKind,
    PendingChange,
    PersistedState,
    decode_state,
    encode_state,
)

__all__ = [
    "CacheEntry",
    "ChangeKind",
    "FuelOperationCreate",
    "FuelPage",
    "ObservationCreate",
    "ObservationPage",
    "ObservationPatch",
    "PendingChange",
    "PersistedState",
    "TaskCreate",
    "TaskPage",
    "TaskPatch",
    "decode_state",
    "encode_state",
]
