"""Shared fixtures: every tier runs against both storage adapters."""

from pathlib import Path

import pytest

from recall.core.config import Settings
from recall.memory.episodic import EpisodicStore
from recall.memory.inmemory import InMemoryAdapter
from recall.memory.semantic import SemanticStore
from recall.memory.short_term import ShortTermStore
from recall.memory.store import SQLiteMemoryAdapter


@pytest.fixture(params=["sqlite", "memory"])
async def adapter(request, tmp_path: Path):
    """Connected adapter, SQLite file or in-memory."""
    if request.param == "sqlite":
        store = SQLiteMemoryAdapter(tmp_path / "test.db")
    else:
        store = InMemoryAdapter()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path, _env_file=None)


@pytest.fixture
def short_term(adapter) -> ShortTermStore:
    return ShortTermStore(adapter)


@pytest.fixture
def episodic(adapter, short_term) -> EpisodicStore:
    return EpisodicStore(adapter, short_term)


@pytest.fixture
def semantic(adapter) -> SemanticStore:
    return SemanticStore(adapter)
