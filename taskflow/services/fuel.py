"""
Fuel Ledger
===========

Append-only log of fuel purchases, use and transfers kept in the remote
fuel table, with running balances per fuel type.  Online only, like
observations.
"""

import logging
from typing import Callable, Iterable, Optional

from taskflow.core.errors import ConnectivityError
from taskflow.models.fuel import FuelOperation, FuelType
from taskflow.schemas.fuel import FuelOperationCreate
from taskflow.services.repository import FuelRepository

logger = logging.getLogger(__name__)


def fuel_balances(operations: Iterable[FuelOperation]) -> dict[FuelType, float]:
    """Litres on hand per fuel type: purchases minus everything else."""
    balances = {fuel_type: 0.0 for fuel_type in FuelType}
    for operation in operations:
        balances[operation.fuel_type] += operation.signed_amount
    return balances


class FuelLedger:
    """Loaded fuel operations, newest first."""

    def __init__(
        self,
        repository: FuelRepository,
        *,
        is_online: Callable[[], bool] = lambda: True,
    ) -> None:
        self.repository = repository
        self._is_online = is_online
        self._operations: list[FuelOperation] = []
        self._cursor: Optional[str] = None
        self.has_more = False

    @property
    def operations(self) -> list[FuelOperation]:
        return list(self._operations)

    @property
    def balances(self) -> dict[FuelType, float]:
        """Balances over the operations loaded so far."""
        return fuel_balances(self._operations)

    async def load(self, more: bool = False) -> list[FuelOperation]:
        """Fetch the first page, or the next one with ``more=True``."""
        self._require_online("load fuel operations")
        page = await self.repository.list(self._cursor if more else None)
        if more:
            known = {op.id for op in self._operations}
            self._operations += [op for op in page.operations if op.id not in known]
        else:
            self._operations = list(page.operations)
        self._cursor = page.next_cursor
        self.has_more = page.has_more
        return self.operations

    async def record(self, data: FuelOperationCreate) -> FuelOperation:
        self._require_online("record fuel operations")
        operation = data.to_operation(await self.repository.create(data))
        self._operations.insert(0, operation)
        logger.info(
            "Recorded %s of %.1f L %s",
            operation.type.value,
            operation.amount,
            operation.fuel_type.value,
        )
        return operation

    def _require_online(self, action: str) -> None:
        if not self._is_online():
            raise ConnectivityError(f"Cannot {action} while offline")
