"""Tests for degrading to in-memory storage."""

import logging
from datetime import datetime
from pathlib import Path

import pytest

from recall.core.config import Settings
from recall.memory.base import ContextEntry
from recall.memory.fallback import FallbackAdapter, open_adapter
from recall.memory.inmemory import InMemoryAdapter
from recall.memory.short_term import ShortTermStore
from recall.memory.store import SQLiteMemoryAdapter


@pytest.mark.asyncio
async def test_connect_failure_degrades(tmp_path: Path, caplog):
    """A database path that can't be opened falls back to memory."""
    unusable = tmp_path / "is_a_directory"
    unusable.mkdir()

    adapter = FallbackAdapter(SQLiteMemoryAdapter(unusable))
    with caplog.at_level(logging.WARNING, logger="recall"):
        await adapter.connect()

    assert adapter.degraded
    assert isinstance(adapter.active, InMemoryAdapter)
    assert "using in-memory storage" in caplog.text

    store = ShortTermStore(adapter)
    assert await store.store_context("k", "v") is True
    assert await store.get_context("k") == "v"
    await adapter.close()


@pytest.mark.asyncio
async def test_query_failure_degrades_permanently(tmp_path: Path):
    primary = SQLiteMemoryAdapter(tmp_path / "memory.db")
    adapter = FallbackAdapter(primary)
    await adapter.connect()
    assert not adapter.degraded

    await adapter.put_context(ContextEntry(key="k", value="durable", timestamp=datetime.now()))
    assert (await adapter.get_context("k")).value == "durable"

    # Storage disappears underneath the adapter
    await primary.close()

    assert await adapter.get_context("k") is None
    assert adapter.degraded

    await adapter.put_context(ContextEntry(key="k", value="volatile", timestamp=datetime.now()))
    assert (await adapter.get_context("k")).value == "volatile"

    # Reconnecting the primary does not bring it back into use
    await primary.connect()
    assert (await adapter.get_context("k")).value == "volatile"
    await adapter.close()


@pytest.mark.asyncio
async def test_open_adapter_backends(tmp_path: Path):
    memory = await open_adapter(
        Settings(data_dir=tmp_path, storage_backend="memory", _env_file=None)
    )
    assert isinstance(memory, InMemoryAdapter)
    await memory.close()

    durable = await open_adapter(Settings(data_dir=tmp_path, _env_file=None))
    assert isinstance(durable, FallbackAdapter)
    assert not durable.degraded
    assert (await durable.counts())["episodic_memory"] == 0
    await durable.close()
