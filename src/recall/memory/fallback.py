"""Degrading adapter: durable storage until it fails, in-memory afterwards."""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from recall.core.config import Settings
from recall.core.logging import get_logger
from recall.memory.base import (
    ContextEntry,
    Episode,
    EpisodeQuery,
    KnowledgeNode,
    PersistenceAdapter,
    QueryLogEntry,
    Relationship,
    RelationshipDirection,
    SessionSummary,
)
from recall.memory.inmemory import InMemoryAdapter
from recall.memory.store import SQLiteMemoryAdapter

logger = get_logger("memory.fallback")

T = TypeVar("T")


class FallbackAdapter(PersistenceAdapter):
    """Wraps a durable adapter and swaps in InMemoryAdapter on first failure.

    The swap is permanent for the lifetime of the object; the durable path
    is never retried. Callers see the same results surface either way.
    """

    def __init__(self, primary: PersistenceAdapter):
        self._primary = primary
        self._fallback: InMemoryAdapter | None = None

    @property
    def degraded(self) -> bool:
        return self._fallback is not None

    @property
    def active(self) -> PersistenceAdapter:
        return self._fallback or self._primary

    async def connect(self) -> None:
        try:
            await self._primary.connect()
        except Exception as e:
            await self._degrade(f"connect failed: {e}")

    async def close(self) -> None:
        if self._fallback is None:
            await self._primary.close()
            return
        try:
            await self._primary.close()
        except Exception as e:
            logger.debug(f"Ignoring close error on abandoned storage: {e}")

    async def _degrade(self, reason: str) -> None:
        if self._fallback is not None:
            return
        logger.warning(f"Durable memory storage unavailable ({reason}); using in-memory storage")
        self._fallback = InMemoryAdapter()
        await self._fallback.connect()

    async def _run(self, op: Callable[[PersistenceAdapter], Awaitable[T]]) -> T:
        if self._fallback is not None:
            return await op(self._fallback)
        try:
            return await op(self._primary)
        except Exception as e:
            await self._degrade(f"{type(e).__name__}: {e}")
            return await op(self._fallback)

    # Short-term operations

    async def put_context(self, entry: ContextEntry) -> None:
        return await self._run(lambda a: a.put_context(entry))

    async def get_context(self, key: str) -> ContextEntry | None:
        return await self._run(lambda a: a.get_context(key))

    async def touch_context(self, key: str, timestamp: datetime) -> None:
        return await self._run(lambda a: a.touch_context(key, timestamp))

    async def list_context(self, pattern: str | None = None) -> list[ContextEntry]:
        return await self._run(lambda a: a.list_context(pattern))

    async def delete_context(self, key: str) -> bool:
        return await self._run(lambda a: a.delete_context(key))

    async def purge_expired_context(self, now: datetime) -> int:
        return await self._run(lambda a: a.purge_expired_context(now))

    # Episodic operations

    async def insert_episode(self, episode: Episode) -> int:
        return await self._run(lambda a: a.insert_episode(episode))

    async def get_episode(self, episode_id: int) -> Episode | None:
        return await self._run(lambda a: a.get_episode(episode_id))

    async def query_episodes(self, query: EpisodeQuery) -> list[Episode]:
        return await self._run(lambda a: a.query_episodes(query))

    async def search_episodes(
        self,
        text: str,
        episode_type: str | None = None,
        session_id: str | None = None,
        min_importance: int | None = None,
        limit: int = 10,
    ) -> list[Episode]:
        return await self._run(
            lambda a: a.search_episodes(text, episode_type, session_id, min_importance, limit)
        )

    async def update_episode_importance(self, episode_id: int, importance: int) -> bool:
        return await self._run(lambda a: a.update_episode_importance(episode_id, importance))

    async def insert_summary(self, summary: SessionSummary) -> int:
        return await self._run(lambda a: a.insert_summary(summary))

    async def latest_summary(self, session_id: str) -> SessionSummary | None:
        return await self._run(lambda a: a.latest_summary(session_id))

    # Semantic operations

    async def get_node(self, node_id: str) -> KnowledgeNode | None:
        return await self._run(lambda a: a.get_node(node_id))

    async def get_node_by_key(self, category: str, topic: str) -> KnowledgeNode | None:
        return await self._run(lambda a: a.get_node_by_key(category, topic))

    async def upsert_node(self, node: KnowledgeNode) -> str:
        return await self._run(lambda a: a.upsert_node(node))

    async def nodes_by_category(self, category: str) -> list[KnowledgeNode]:
        return await self._run(lambda a: a.nodes_by_category(category))

    async def search_nodes(
        self, text: str, category: str | None = None, limit: int = 10
    ) -> list[KnowledgeNode]:
        return await self._run(lambda a: a.search_nodes(text, category, limit))

    async def touch_nodes(self, node_ids: list[str], timestamp: datetime) -> None:
        return await self._run(lambda a: a.touch_nodes(node_ids, timestamp))

    async def get_relationship(
        self, source_id: str, target_id: str, relationship_type: str
    ) -> Relationship | None:
        return await self._run(
            lambda a: a.get_relationship(source_id, target_id, relationship_type)
        )

    async def upsert_relationship(self, relationship: Relationship) -> None:
        return await self._run(lambda a: a.upsert_relationship(relationship))

    async def relationships_for(
        self,
        node_id: str,
        direction: RelationshipDirection = RelationshipDirection.BOTH,
        relationship_type: str | None = None,
    ) -> list[Relationship]:
        return await self._run(
            lambda a: a.relationships_for(node_id, direction, relationship_type)
        )

    # Diagnostics

    async def log_query(self, entry: QueryLogEntry) -> None:
        return await self._run(lambda a: a.log_query(entry))

    async def recent_queries(self, limit: int = 20) -> list[QueryLogEntry]:
        return await self._run(lambda a: a.recent_queries(limit))

    async def counts(self) -> dict[str, int]:
        return await self._run(lambda a: a.counts())


async def open_adapter(settings: Settings) -> PersistenceAdapter:
    """Build and connect the adapter selected by settings."""
    if settings.storage_backend == "memory":
        adapter: PersistenceAdapter = InMemoryAdapter()
    else:
        adapter = FallbackAdapter(SQLiteMemoryAdapter(settings.db_path))

    await adapter.connect()
    return adapter
