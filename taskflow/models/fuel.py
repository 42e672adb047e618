"""
Fuel Ledger Models
==================

Purchases, use and transfers of fuel.  Only purchases add to the
stock; every other operation draws from it.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from taskflow.utils.helpers import Instant


class FuelOperationType(str, Enum):
    """Kind of ledger entry."""
    PURCHASE = "Purchase"
    USE = "Use"
    TRANSFER_TO_BOTTLE = "Transfer to Bottle"
    TRANSFER_TO_CONTRACTOR = "Transfer to Contractor"

    @property
    def adds_stock(self) -> bool:
        return self is FuelOperationType.PURCHASE


class FuelType(str, Enum):
    DIESEL = "Diesel"
    PETROL = "Petrol"


class FuelOperation(BaseModel):
    """One fuel ledger entry; ``amount`` is in litres."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    type: FuelOperationType
    amount: float = Field(gt=0)
    date: Instant
    fuel_type: FuelType = Field(alias="fuelType")
    operator: str
    notes: str = ""

    def __repr__(self) -> str:
        return f"<FuelOperation(id={self.id}, type={self.type.value}, amount={self.amount})>"

    @property
    def signed_amount(self) -> float:
        """Litres added to (positive) or taken from (negative) the stock."""
        return self.amount if self.type.adds_stock else -self.amount
