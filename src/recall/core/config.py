"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: RECALL_
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="recall.db", description="SQLite database name")
    storage_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        description="Durable SQLite storage, or volatile in-memory storage",
    )

    # Short-term tier
    working_context_limit: int = Field(
        default=10, ge=1, description="Default max items returned from working context"
    )

    # Controller
    consolidation_interval: int = Field(
        default=5, ge=1, description="Interactions between consolidation runs"
    )
    consolidation_min_importance: int = Field(
        default=4, ge=1, le=5, description="Min working context importance to promote"
    )
    knowledge_scan_window: int = Field(
        default=20, ge=1, description="Recent episodes scanned for knowledge extraction"
    )
    recent_conversation_count: int = Field(
        default=5, ge=0, description="Recent conversations included in enriched context"
    )
    knowledge_hits_per_keyword: int = Field(
        default=2, ge=0, description="Knowledge search hits kept per query keyword"
    )

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
