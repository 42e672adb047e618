"""
State Store
===========

Durable storage for the sync engine's ``PersistedState`` (view, cache
entries, pending and failed changes, sequence counter, selection).

Backends:
    FileStateStore   JSON file on local disk, replaced atomically
    RedisStateStore  single Redis string key

Both backends catch storage errors internally: ``load`` returns ``None``
and ``save`` returns ``False`` so the app keeps running on in-memory
state (graceful degradation).  A payload that no longer decodes is
treated as absent.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Union

import redis.asyncio as redis
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from taskflow.config import Settings
from taskflow.schemas.state import PersistedState, decode_state, encode_state

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Where the engine's state lives between runs."""

    async def load(self) -> Optional[PersistedState]:
        ...

    async def save(self, state: PersistedState) -> bool:
        ...

    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------------

class FileStateStore:
    """JSON file backend; blocking I/O runs in a worker thread."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    async def load(self) -> Optional[PersistedState]:
        try:
            raw = await asyncio.to_thread(self._read)
        except OSError as exc:
            logger.warning("state_store file load error: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return decode_state(raw)
        except ValidationError as exc:
            logger.warning("state_store discarding unreadable state in %s: %s", self.path, exc)
            return None

    async def save(self, state: PersistedState) -> bool:
        try:
            await asyncio.to_thread(self._write, encode_state(state))
            return True
        except OSError as exc:
            logger.warning("state_store file save error: %s", exc)
            return False

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self.path.unlink, True)
        except OSError as exc:
            logger.warning("state_store file clear error: %s", exc)

    async def close(self) -> None:
        return None

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.path)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

class RedisStateStore:
    """Redis backend storing the encoded state under one key."""

    def __init__(
        self,
        url: str,
        key: str = "taskflow:state",
        client: Optional[Redis] = None,
    ) -> None:
        self.url = url
        self.key = key
        self._client = client

    def _get_client(self) -> Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
        return self._client

    async def load(self) -> Optional[PersistedState]:
        try:
            raw = await self._get_client().get(self.key)
        except (RedisError, OSError) as exc:
            logger.warning("state_store redis load error: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return decode_state(raw)
        except ValidationError as exc:
            logger.warning("state_store discarding unreadable state at %s: %s", self.key, exc)
            return None

    async def save(self, state: PersistedState) -> bool:
        try:
            await self._get_client().set(self.key, encode_state(state))
            return True
        except (RedisError, OSError) as exc:
            logger.warning("state_store redis save error: %s", exc)
            return False

    async def clear(self) -> None:
        try:
            await self._get_client().delete(self.key)
        except (RedisError, OSError) as exc:
            logger.warning("state_store redis clear error: %s", exc)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_state_store(settings: Settings) -> StateStore:
    """Pick the backend named by ``STATE_BACKEND``."""
    if settings.STATE_BACKEND == "redis":
        return RedisStateStore(settings.REDIS_URL, settings.STATE_REDIS_KEY)
    return FileStateStore(settings.STATE_FILE_PATH)
