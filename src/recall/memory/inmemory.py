"""In-memory persistence adapter.

Same query surface and ordering rules as SQLiteMemoryAdapter; nothing
survives the process. Used when durable storage is disabled or has failed.
"""

from dataclasses import replace
from datetime import datetime
from itertools import count
from uuid import uuid4

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
from recall.memory.codec import decode_value, encode_value

logger = get_logger("memory.inmemory")


class InMemoryAdapter(PersistenceAdapter):
    """Dict-backed storage. Returned records are copies."""

    def __init__(self) -> None:
        self._context: dict[str, ContextEntry] = {}
        self._episodes: dict[int, Episode] = {}
        self._summaries: dict[int, SessionSummary] = {}
        # Insertion order doubles as the rowid tie-break
        self._nodes: dict[str, KnowledgeNode] = {}
        self._relationships: dict[tuple[str, str, str], Relationship] = {}
        self._queries: list[QueryLogEntry] = []

        self._episode_ids = count(1)
        self._summary_ids = count(1)
        self._relationship_ids = count(1)
        self._query_ids = count(1)

    async def connect(self) -> None:
        logger.debug("Using in-memory storage")

    # Short-term operations

    async def put_context(self, entry: ContextEntry) -> None:
        # Same JSON round-trip as the database so values compare equal
        value = decode_value(encode_value(entry.value))
        self._context[entry.key] = replace(entry, value=value)

    async def get_context(self, key: str) -> ContextEntry | None:
        entry = self._context.get(key)
        return replace(entry) if entry else None

    async def touch_context(self, key: str, timestamp: datetime) -> None:
        entry = self._context.get(key)
        if entry:
            entry.timestamp = timestamp

    async def list_context(self, pattern: str | None = None) -> list[ContextEntry]:
        entries = [
            replace(entry)
            for entry in self._context.values()
            if not pattern or pattern.lower() in entry.key.lower()
        ]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries

    async def delete_context(self, key: str) -> bool:
        return self._context.pop(key, None) is not None

    async def purge_expired_context(self, now: datetime) -> int:
        expired = [key for key, entry in self._context.items() if entry.is_expired(now)]
        for key in expired:
            del self._context[key]
        return len(expired)

    # Episodic operations

    async def insert_episode(self, episode: Episode) -> int:
        episode_id = next(self._episode_ids)
        self._episodes[episode_id] = replace(episode, id=episode_id)
        return episode_id

    async def get_episode(self, episode_id: int) -> Episode | None:
        episode = self._episodes.get(episode_id)
        return replace(episode) if episode else None

    async def query_episodes(self, query: EpisodeQuery) -> list[Episode]:
        matches = []
        for episode in self._episodes.values():
            if query.session_id is not None and episode.session_id != query.session_id:
                continue
            if query.types and episode.type not in query.types:
                continue
            if query.start_time is not None and episode.timestamp < query.start_time:
                continue
            if query.end_time is not None and episode.timestamp > query.end_time:
                continue
            matches.append(episode)

        matches.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
        window = matches[query.offset : query.offset + query.limit]
        return [replace(e) for e in window]

    async def search_episodes(
        self,
        text: str,
        episode_type: str | None = None,
        session_id: str | None = None,
        min_importance: int | None = None,
        limit: int = 10,
    ) -> list[Episode]:
        needle = text.lower()
        matches = [
            e
            for e in self._episodes.values()
            if needle in e.content.lower()
            and (not episode_type or e.type == episode_type)
            and (not session_id or e.session_id == session_id)
            and (min_importance is None or e.importance >= min_importance)
        ]
        matches.sort(key=lambda e: (e.importance, e.timestamp, e.id), reverse=True)
        return [replace(e) for e in matches[:limit]]

    async def update_episode_importance(self, episode_id: int, importance: int) -> bool:
        episode = self._episodes.get(episode_id)
        if episode is None:
            return False
        episode.importance = importance
        return True

    async def insert_summary(self, summary: SessionSummary) -> int:
        summary_id = next(self._summary_ids)
        self._summaries[summary_id] = replace(summary, id=summary_id)
        return summary_id

    async def latest_summary(self, session_id: str) -> SessionSummary | None:
        candidates = [s for s in self._summaries.values() if s.session_id == session_id]
        if not candidates:
            return None
        latest = max(candidates, key=lambda s: (s.end_time, s.id))
        return replace(latest)

    # Semantic operations

    async def get_node(self, node_id: str) -> KnowledgeNode | None:
        node = self._nodes.get(node_id)
        return replace(node) if node else None

    async def get_node_by_key(self, category: str, topic: str) -> KnowledgeNode | None:
        node = self._find_node(category, topic)
        return replace(node) if node else None

    async def upsert_node(self, node: KnowledgeNode) -> str:
        existing = self._find_node(node.category, node.topic)
        if existing is None:
            node_id = node.id or str(uuid4())
            self._nodes[node_id] = replace(node, id=node_id)
            return node_id

        existing.content = node.content
        existing.confidence = node.confidence
        existing.timestamp = node.timestamp
        existing.source = node.source
        existing.metadata = node.metadata
        return existing.id

    async def nodes_by_category(self, category: str) -> list[KnowledgeNode]:
        nodes = [replace(n) for n in self._nodes.values() if n.category == category]
        nodes.sort(key=lambda n: n.topic)
        return nodes

    async def search_nodes(
        self, text: str, category: str | None = None, limit: int = 10
    ) -> list[KnowledgeNode]:
        needle = text.lower()
        matches = [
            n
            for n in self._nodes.values()
            if (needle in n.topic.lower() or needle in n.content.lower())
            and (not category or n.category == category)
        ]
        # Stable sort keeps insertion order for full ties
        matches.sort(key=lambda n: (n.confidence, n.last_accessed), reverse=True)
        return [replace(n) for n in matches[:limit]]

    async def touch_nodes(self, node_ids: list[str], timestamp: datetime) -> None:
        for node_id in node_ids:
            node = self._nodes.get(node_id)
            if node:
                node.last_accessed = timestamp

    async def get_relationship(
        self, source_id: str, target_id: str, relationship_type: str
    ) -> Relationship | None:
        rel = self._relationships.get((source_id, target_id, relationship_type))
        return replace(rel) if rel else None

    async def upsert_relationship(self, relationship: Relationship) -> None:
        key = (relationship.source_id, relationship.target_id, relationship.type)
        existing = self._relationships.get(key)
        if existing is None:
            self._relationships[key] = replace(
                relationship,
                id=next(self._relationship_ids),
                other_category=None,
                other_topic=None,
            )
            return

        existing.strength = relationship.strength
        existing.timestamp = relationship.timestamp
        existing.metadata = relationship.metadata

    async def relationships_for(
        self,
        node_id: str,
        direction: RelationshipDirection = RelationshipDirection.BOTH,
        relationship_type: str | None = None,
    ) -> list[Relationship]:
        results = []
        for rel in self._relationships.values():
            if direction == RelationshipDirection.OUTGOING:
                matched = rel.source_id == node_id
            elif direction == RelationshipDirection.INCOMING:
                matched = rel.target_id == node_id
            else:
                matched = node_id in (rel.source_id, rel.target_id)
            if not matched or (relationship_type and rel.type != relationship_type):
                continue

            outgoing = rel.source_id == node_id and direction != RelationshipDirection.INCOMING
            other = self._nodes.get(rel.target_id if outgoing else rel.source_id)
            results.append(
                replace(
                    rel,
                    other_category=other.category if other else None,
                    other_topic=other.topic if other else None,
                )
            )

        # Relationships dict preserves insertion order, matching the id tie-break
        results.sort(key=lambda r: (r.strength, r.timestamp), reverse=True)
        return results

    # Diagnostics

    async def log_query(self, entry: QueryLogEntry) -> None:
        self._queries.append(replace(entry, id=next(self._query_ids)))

    async def recent_queries(self, limit: int = 20) -> list[QueryLogEntry]:
        ordered = sorted(self._queries, key=lambda q: (q.timestamp, q.id), reverse=True)
        return [replace(q) for q in ordered[:limit]]

    async def counts(self) -> dict[str, int]:
        return {
            "short_term_memory": len(self._context),
            "episodic_memory": len(self._episodes),
            "conversation_summaries": len(self._summaries),
            "semantic_knowledge": len(self._nodes),
            "knowledge_relationships": len(self._relationships),
            "memory_queries": len(self._queries),
        }

    def _find_node(self, category: str, topic: str) -> KnowledgeNode | None:
        for node in self._nodes.values():
            if node.category == category and node.topic == topic:
                return node
        return None
