"""
State Store Tests
=================

Tests for the persistence backends including:
- File round-trip and atomic replace
- Redis get/set through a mocked client
- Graceful degradation on storage errors
"""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import make_task
from taskflow.config import Settings
from taskflow.schemas.state import PersistedState, encode_state
from taskflow.services.state_store import (
    FileStateStore,
    RedisStateStore,
    build_state_store,
)


def _state() -> PersistedState:
    return PersistedState(tasks=[make_task("rec-a")], selected_task_id="rec-a", last_sequence=3)


# ---------------------------------------------------------------------------
# FileStateStore
# ---------------------------------------------------------------------------

class TestFileStateStore:
    """Tests for FileStateStore"""

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path: Path):
        store = FileStateStore(tmp_path / "nested" / "state.json")

        assert await store.save(_state()) is True
        assert await store.load() == _state()
        assert not (tmp_path / "nested" / "state.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path: Path):
        assert await FileStateStore(tmp_path / "state.json").load() is None

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_none(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        assert await FileStateStore(path).load() is None

    @pytest.mark.asyncio
    async def test_clear_removes_file(self, tmp_path: Path):
        store = FileStateStore(tmp_path / "state.json")
        await store.save(_state())

        await store.clear()
        await store.clear()

        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_write_error_returns_false(self, tmp_path: Path):
        store = FileStateStore(tmp_path / "state.json")

        with patch.object(store, "_write", side_effect=OSError("disk full")):
            assert await store.save(_state()) is False


# ---------------------------------------------------------------------------
# RedisStateStore
# ---------------------------------------------------------------------------

class TestRedisStateStore:
    """Tests for RedisStateStore"""

    @pytest.mark.asyncio
    async def test_save_writes_encoded_state(self):
        client = AsyncMock()
        store = RedisStateStore("redis://localhost", "taskflow:test", client=client)

        assert await store.save(_state()) is True
        client.set.assert_awaited_once_with("taskflow:test", encode_state(_state()))

    @pytest.mark.asyncio
    async def test_load_decodes_state(self):
        client = AsyncMock()
        client.get.return_value = encode_state(_state())
        store = RedisStateStore("redis://localhost", client=client)

        assert await store.load() == _state()
        client.get.assert_awaited_once_with("taskflow:state")

    @pytest.mark.asyncio
    async def test_missing_key_loads_none(self):
        client = AsyncMock()
        client.get.return_value = None

        assert await RedisStateStore("redis://localhost", client=client).load() is None

    @pytest.mark.asyncio
    async def test_redis_failure_degrades_gracefully(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        client.set.side_effect = RedisConnectionError("down")
        store = RedisStateStore("redis://localhost", client=client)

        assert await store.load() is None
        assert await store.save(_state()) is False

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        client = AsyncMock()
        store = RedisStateStore("redis://localhost", client=client)

        await store.close()

        client.aclose.assert_awaited_once()


def test_build_state_store_picks_backend(tmp_path: Path):
    file_store = build_state_store(Settings(STATE_FILE_PATH=str(tmp_path / "s.json")))
    redis_store = build_state_store(Settings(STATE_BACKEND="redis", STATE_REDIS_KEY="k"))

    assert isinstance(file_store, FileStateStore)
    assert isinstance(redis_store, RedisStateStore)
    assert redis_store.key == "k"
