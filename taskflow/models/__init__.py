"""
Domain Models
=============

Task entity and the enumerations shared across the sync engine, plus
the observation and fuel ledger records.
"""

from taskflow.models.fuel import FuelOperation, FuelOperationType, FuelType
from taskflow.models.observation import Observation, ObservationType
from taskflow.models.task import (
    TEMP_ID_PREFIX,
    CacheDuration,
    FilterKey,
    Task,
    TaskImportance,
    TaskStatus,
    is_temporary_id,
)

__all__ = [
    "TEMP_ID_PREFIX",
    "CacheDuration",
    "FilterKey",
    "FuelOperation",
    "FuelOperationType",
    "FuelType",
    "Observation",
    "ObservationType",
    "Task",
    "TaskImportance",
    "TaskStatus",
    "is_temporary_id",
]
