"""Remote repository interfaces."""

from typing import Optional, Protocol

from taskflow.models.observation import Observation
from taskflow.models.task import FilterKey
from taskflow.schemas.fuel import FuelOperationCreate, FuelPage
from taskflow.schemas.observation import ObservationCreate, ObservationPage
from taskflow.schemas.task import TaskCreate, TaskPage, TaskPatch


class TaskRepository(Protocol):
    """
    Interface for the remote source of truth.

    Implementations raise ``ConnectivityError`` when the store cannot be
    reached and a ``RemoteError`` subclass (``AuthError``,
    ``NotFoundError`` ...) when it rejects a call.
    """

    async def list(self, filter_key: FilterKey, cursor: Optional[str] = None) -> TaskPage:
        """Fetch one page of tasks matching *filter_key*, filtered and sorted remotely."""
        ...

    async def create(self, task: TaskCreate) -> str:
        """Create a record and return its durable id."""
        ...

    async def update(self, task_id: str, patch: TaskPatch) -> None:
        """Write the fields present in *patch* over the current remote record."""
        ...

    async def delete(self, task_id: str) -> None:
        """Delete a record."""
        ...


class ObservationRepository(Protocol):
    """Remote observations, newest first."""

    async def list(self, cursor: Optional[str] = None) -> ObservationPage: ...

    async def create(self, observation: ObservationCreate) -> str: ...

    async def update(self, observation: Observation) -> None: ...

    async def delete(self, observation_id: str) -> None: ...


class FuelRepository(Protocol):
    """Remote fuel ledger, newest first."""

    async def list(self, cursor: Optional[str] = None) -> FuelPage: ...

    async def create(self, operation: FuelOperationCreate) -> str: ...
