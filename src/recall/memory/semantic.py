"""
Semantic memory tier - a small knowledge graph.

Nodes are unique on (category, topic) and upserted in place. Edges are
unique on (source, target, type) and require both endpoints to exist.
Reading a node refreshes its last_accessed time.
"""

import asyncio
import re
import time
from datetime import datetime
from uuid import uuid4

from recall.core.logging import get_logger
from recall.memory.base import (
    KnowledgeNode,
    MemoryType,
    Metadata,
    PersistenceAdapter,
    QueryLogEntry,
    Relationship,
    RelationshipDirection,
)

logger = get_logger("memory.semantic")

_WHITESPACE = re.compile(r"\s+")


def make_node_id(category: str, topic: str) -> str:
    return _WHITESPACE.sub("_", f"{category}_{topic}_{uuid4().hex[:8]}")


class SemanticStore:
    """Semantic tier over a shared persistence adapter."""

    def __init__(self, adapter: PersistenceAdapter):
        self._adapter = adapter
        self._lock = asyncio.Lock()

    # Nodes

    async def store_knowledge(
        self,
        category: str,
        topic: str,
        content: str,
        confidence: float = 1.0,
        source: str | None = None,
        metadata: Metadata | None = None,
    ) -> str | None:
        """Insert or update the node for (category, topic), return its id."""
        now = datetime.now()
        node = KnowledgeNode(
            id=make_node_id(category, topic),
            category=category,
            topic=topic,
            content=content,
            confidence=confidence,
            timestamp=now,
            last_accessed=now,
            source=source,
            metadata=metadata,
        )
        async with self._lock:
            try:
                node_id = await self._adapter.upsert_node(node)
                logger.debug(f"Stored knowledge {category}/{topic} as {node_id}")
                return node_id
            except Exception as e:
                logger.error(f"Failed to store knowledge {category}/{topic}: {e}")
                return None

    async def get_knowledge(self, category: str, topic: str) -> KnowledgeNode | None:
        async with self._lock:
            try:
                node = await self._adapter.get_node_by_key(category, topic)
                if node is None:
                    return None
                return (await self._touch([node]))[0]
            except Exception as e:
                logger.error(f"Failed to get knowledge {category}/{topic}: {e}")
                return None

    async def get_by_id(self, node_id: str) -> KnowledgeNode | None:
        async with self._lock:
            try:
                node = await self._adapter.get_node(node_id)
                if node is None:
                    return None
                return (await self._touch([node]))[0]
            except Exception as e:
                logger.error(f"Failed to get knowledge {node_id}: {e}")
                return None

    async def get_by_category(self, category: str) -> list[KnowledgeNode]:
        """All nodes in a category, ordered by topic."""
        async with self._lock:
            try:
                return await self._touch(await self._adapter.nodes_by_category(category))
            except Exception as e:
                logger.error(f"Failed to list category {category}: {e}")
                return []

    async def search(
        self, query: str, category: str | None = None, limit: int = 10
    ) -> list[KnowledgeNode]:
        """Substring match on topic/content.

        Ordered by confidence, then most recently accessed, then insertion.
        """
        async with self._lock:
            try:
                started = time.perf_counter()
                nodes = await self._adapter.search_nodes(query, category, limit)
                await self._log_query(query, len(nodes), started)
                return await self._touch(nodes)
            except Exception as e:
                logger.error(f"Knowledge search failed for '{query}': {e}")
                return []

    # Relationships

    async def create_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        strength: float = 1.0,
        metadata: Metadata | None = None,
    ) -> bool:
        """Link two existing nodes. Repeating a triple updates it."""
        async with self._lock:
            try:
                source = await self._adapter.get_node(source_id)
                target = await self._adapter.get_node(target_id)
                if source is None or target is None:
                    missing = source_id if source is None else target_id
                    logger.warning(f"Relationship endpoint does not exist: {missing}")
                    return False

                await self._adapter.upsert_relationship(
                    Relationship(
                        id=None,
                        source_id=source_id,
                        target_id=target_id,
                        type=relationship_type,
                        strength=strength,
                        timestamp=datetime.now(),
                        metadata=metadata,
                    )
                )
                return True
            except Exception as e:
                logger.error(f"Failed to create relationship {source_id} -> {target_id}: {e}")
                return False

    async def get_relationship(
        self, source_id: str, target_id: str, relationship_type: str
    ) -> Relationship | None:
        async with self._lock:
            try:
                return await self._adapter.get_relationship(source_id, target_id, relationship_type)
            except Exception as e:
                logger.error(f"Failed to get relationship: {e}")
                return None

    async def get_relationships(
        self,
        node_id: str,
        direction: RelationshipDirection | str = RelationshipDirection.BOTH,
        relationship_type: str | None = None,
    ) -> list[Relationship]:
        """Edges touching node_id, annotated with the other endpoint's category/topic."""
        async with self._lock:
            try:
                return await self._adapter.relationships_for(
                    node_id, RelationshipDirection(direction), relationship_type
                )
            except Exception as e:
                logger.error(f"Failed to get relationships for {node_id}: {e}")
                return []

    # Internal helpers (caller holds the lock)

    async def _touch(self, nodes: list[KnowledgeNode]) -> list[KnowledgeNode]:
        if not nodes:
            return nodes
        now = datetime.now()
        await self._adapter.touch_nodes([n.id for n in nodes], now)
        for node in nodes:
            node.last_accessed = now
        return nodes

    async def _log_query(self, query: str, result_count: int, started: float) -> None:
        try:
            await self._adapter.log_query(
                QueryLogEntry(
                    id=None,
                    memory_type=MemoryType.SEMANTIC,
                    query=query,
                    timestamp=datetime.now(),
                    result_count=result_count,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )
            )
        except Exception as e:
            logger.warning(f"Failed to log semantic query: {e}")
