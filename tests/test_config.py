"""Tests for configuration module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from recall.core.config import Settings


def test_default_settings():
    """Settings load with defaults."""
    settings = Settings(
        _env_file=None,  # Don't load .env in tests
    )
    assert settings.data_dir == Path("data")
    assert settings.storage_backend == "sqlite"
    assert settings.consolidation_interval == 5
    assert settings.consolidation_min_importance == 4
    assert settings.knowledge_hits_per_keyword == 2


def test_db_path():
    """Database path combines data_dir and db_name."""
    settings = Settings(
        data_dir=Path("/tmp/test"),
        db_name="test.db",
        _env_file=None,
    )
    assert settings.db_path == Path("/tmp/test/test.db")


def test_env_prefix(monkeypatch):
    """RECALL_ environment variables override defaults."""
    monkeypatch.setenv("RECALL_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("RECALL_CONSOLIDATION_INTERVAL", "3")
    settings = Settings(_env_file=None)
    assert settings.storage_backend == "memory"
    assert settings.consolidation_interval == 3


def test_invalid_backend_rejected():
    with pytest.raises(ValidationError):
        Settings(storage_backend="postgres", _env_file=None)
