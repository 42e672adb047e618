"""
Observation Store
=================

Field notes read from and written straight to the remote observations
table.  Unlike tasks there is no offline queue: every operation needs
the connection and fails fast with ``ConnectivityError`` without it.
"""

import logging
from typing import Any, Callable, Optional

from taskflow.core.errors import ConnectivityError, RecordNotFoundError
from taskflow.models.observation import Observation
from taskflow.schemas.observation import ObservationCreate, ObservationPatch
from taskflow.services.repository import ObservationRepository

logger = logging.getLogger(__name__)


class ObservationStore:
    """Loaded observations, newest first, plus the selection pointer."""

    def __init__(
        self,
        repository: ObservationRepository,
        *,
        is_online: Callable[[], bool] = lambda: True,
    ) -> None:
        self.repository = repository
        self._is_online = is_online
        self._observations: list[Observation] = []
        self._selected_id: Optional[str] = None
        self._cursor: Optional[str] = None
        self.has_more = False

    @property
    def observations(self) -> list[Observation]:
        return list(self._observations)

    @property
    def selected_observation(self) -> Optional[Observation]:
        if self._selected_id is None:
            return None
        return self._find(self._selected_id)

    def get(self, observation_id: str) -> Observation:
        observation = self._find(observation_id)
        if observation is None:
            raise RecordNotFoundError("observation", observation_id)
        return observation

    def select(self, observation_id: Optional[str]) -> Optional[Observation]:
        self._selected_id = observation_id
        return self.selected_observation

    async def load(self, more: bool = False) -> list[Observation]:
        """Fetch the first page, or the next one with ``more=True``."""
        self._require_online("load observations")
        cursor = self._cursor if more else None
        page = await self.repository.list(cursor)
        if more:
            known = {obs.id for obs in self._observations}
            self._observations += [obs for obs in page.observations if obs.id not in known]
        else:
            self._observations = list(page.observations)
        self._cursor = page.next_cursor
        self.has_more = page.has_more
        return self.observations

    async def add(self, data: ObservationCreate) -> Observation:
        self._require_online("add observations")
        observation = data.to_observation(await self.repository.create(data))
        self._observations.insert(0, observation)
        logger.info("Added observation %s", observation.id)
        return observation

    async def update(
        self, observation_id: str, changes: ObservationPatch | dict[str, Any],
    ) -> Observation:
        patch = (
            changes if isinstance(changes, ObservationPatch)
            else ObservationPatch.model_validate(changes)
        )
        self._require_online("update observations")
        updated = patch.apply_to(self.get(observation_id))
        await self.repository.update(updated)
        self._observations = [
            updated if obs.id == observation_id else obs for obs in self._observations
        ]
        return updated

    async def delete(self, observation_id: str) -> None:
        self._require_online("delete observations")
        await self.repository.delete(observation_id)
        self._observations = [obs for obs in self._observations if obs.id != observation_id]
        if self._selected_id == observation_id:
            self._selected_id = None
        logger.info("Deleted observation %s", observation_id)

    def _find(self, observation_id: str) -> Optional[Observation]:
        for observation in self._observations:
            if observation.id == observation_id:
                return observation
        return None

    def _require_online(self, action: str) -> None:
        if not self._is_online():
            raise ConnectivityError(f"Cannot {action} while offline")
