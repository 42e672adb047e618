"""
Fuel Schemas
============

Payload for recording a fuel operation and one page of the ledger.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from taskflow.models.fuel import FuelOperation, FuelOperationType, FuelType
from taskflow.utils.helpers import Instant


class FuelOperationCreate(BaseModel):
    """Payload for recording a fuel operation."""

    model_config = ConfigDict(populate_by_name=True)

    type: FuelOperationType
    amount: float = Field(gt=0)
    date: Instant
    fuel_type: FuelType = Field(alias="fuelType")
    operator: str = Field(min_length=1)
    notes: str = ""

    def to_operation(self, operation_id: str) -> FuelOperation:
        return FuelOperation(id=operation_id, **self.model_dump())


class FuelPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operations: list[FuelOperation] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(None, alias="nextCursor")
    has_more: bool = Field(False, alias="hasMore")
