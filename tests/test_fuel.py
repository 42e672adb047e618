"""
Fuel Ledger Tests
=================
"""

from typing import Optional

import pytest
from pydantic import ValidationError

from conftest import NOW
from taskflow.core.errors import ConnectivityError
from taskflow.models.fuel import FuelOperation, FuelOperationType, FuelType
from taskflow.schemas.fuel import FuelOperationCreate, FuelPage
from taskflow.services.fuel import FuelLedger, fuel_balances


class InMemoryFuelRepository:
    def __init__(self, operations=(), page_size: int = 10) -> None:
        self.page_size = page_size
        self.records: list[FuelOperation] = list(operations)
        self._next_id = 1

    async def list(self, cursor: Optional[str] = None) -> FuelPage:
        start = int(cursor or 0)
        end = start + self.page_size
        has_more = end < len(self.records)
        return FuelPage(
            operations=self.records[start:end],
            next_cursor=str(end) if has_more else None,
            has_more=has_more,
        )

    async def create(self, operation: FuelOperationCreate) -> str:
        operation_id = f"fuel{self._next_id}"
        self._next_id += 1
        self.records.insert(0, operation.to_operation(operation_id))
        return operation_id


def _operation(op_id: str, kind: FuelOperationType, amount: float, fuel: FuelType) -> FuelOperation:
    return FuelOperation(
        id=op_id, type=kind, amount=amount, date=NOW, fuel_type=fuel, operator="David",
    )


def test_balances_add_purchases_and_subtract_the_rest():
    operations = [
        _operation("f1", FuelOperationType.PURCHASE, 100, FuelType.DIESEL),
        _operation("f2", FuelOperationType.USE, 30, FuelType.DIESEL),
        _operation("f3", FuelOperationType.TRANSFER_TO_BOTTLE, 5, FuelType.DIESEL),
        _operation("f4", FuelOperationType.TRANSFER_TO_CONTRACTOR, 10, FuelType.PETROL),
        _operation("f5", FuelOperationType.PURCHASE, 20, FuelType.PETROL),
    ]

    assert fuel_balances(operations) == {FuelType.DIESEL: 65.0, FuelType.PETROL: 10.0}


def test_balances_of_nothing_are_zero():
    assert fuel_balances([]) == {FuelType.DIESEL: 0.0, FuelType.PETROL: 0.0}


def test_amount_must_be_positive():
    with pytest.raises(ValidationError):
        FuelOperationCreate(
            type=FuelOperationType.USE, amount=0, date=NOW, fuel_type=FuelType.DIESEL,
            operator="Artem",
        )


@pytest.mark.asyncio
async def test_record_updates_balances():
    ledger = FuelLedger(InMemoryFuelRepository([
        _operation("f1", FuelOperationType.PURCHASE, 50, FuelType.PETROL),
    ]))
    await ledger.load()

    operation = await ledger.record(FuelOperationCreate(
        type=FuelOperationType.USE, amount=12.5, date=NOW, fuel_type=FuelType.PETROL,
        operator="Artem", notes="Mower",
    ))

    assert operation.id == "fuel1"
    assert ledger.operations[0] == operation
    assert ledger.balances[FuelType.PETROL] == 37.5


@pytest.mark.asyncio
async def test_load_more_appends_next_page():
    repository = InMemoryFuelRepository(
        [_operation(f"f{i}", FuelOperationType.PURCHASE, 1, FuelType.DIESEL) for i in range(3)],
        page_size=2,
    )
    ledger = FuelLedger(repository)

    await ledger.load()
    assert ledger.has_more
    await ledger.load(more=True)

    assert [op.id for op in ledger.operations] == ["f0", "f1", "f2"]
    assert ledger.balances[FuelType.DIESEL] == 3.0


@pytest.mark.asyncio
async def test_offline_is_refused():
    ledger = FuelLedger(InMemoryFuelRepository(), is_online=lambda: False)

    with pytest.raises(ConnectivityError, match="offline"):
        await ledger.load()
