"""
Memory records and the persistence interface.

Every tier stores its records through a PersistenceAdapter so the same
queries run against SQLite or the in-memory stand-in.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Metadata is a flat map of scalars; undecodable stored metadata comes back as raw text
Metadata = dict[str, Any]

CONVERSATION_ROLES = ("user", "assistant", "system")

# metadata["type"] values for entries the controller writes itself
SESSION_SUMMARY_TYPE = "session_summary"
SYNTHESIZED_RESPONSE_TYPE = "synthesized_response"


class MemoryType(Enum):
    EPISODIC = "episodic"
    SEMANTIC = "semantic"


class RelationshipDirection(Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


@dataclass
class ContextEntry:
    """Keyed short-term value."""

    key: str
    value: Any
    timestamp: datetime
    expires_at: datetime | None = None
    metadata: Metadata | str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now())


@dataclass
class WorkingContextItem:
    """Importance-tagged scratch item in the working context list."""

    id: str
    topic: str
    details: str
    importance: int = 3  # 1-5
    created_at: datetime = field(default_factory=datetime.now)
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "details": self.details,
            "importance": self.importance,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkingContextItem":
        expires_at = data.get("expires_at")
        return cls(
            id=data["id"],
            topic=data["topic"],
            details=data["details"],
            importance=int(data.get("importance", 3)),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


@dataclass
class ConversationTurn:
    """Single turn in the short-term conversation buffer."""

    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationTurn":
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class Episode:
    """Logged interaction entry. Only importance changes after write."""

    id: int | None
    session_id: str
    type: str  # role for conversation turns, free-form for events
    content: str
    timestamp: datetime
    importance: int = 1
    related_ids: list[int] | str | None = None
    metadata: Metadata | str | None = None

    @property
    def role(self) -> str:
        return self.type

    @property
    def kind(self) -> str | None:
        """metadata["type"], when metadata decoded to a map."""
        if isinstance(self.metadata, dict):
            return self.metadata.get("type")
        return None


@dataclass
class SessionSummary:
    """Statistical digest of one session's conversations."""

    id: int | None
    session_id: str
    summary: str
    start_time: datetime
    end_time: datetime
    message_count: int


@dataclass
class KnowledgeNode:
    """Durable fact, unique on (category, topic)."""

    id: str
    category: str
    topic: str
    content: str
    timestamp: datetime
    last_accessed: datetime
    confidence: float = 1.0
    source: str | None = None
    metadata: Metadata | str | None = None


@dataclass
class Relationship:
    """Directed, typed, weighted edge between two knowledge nodes.

    other_category/other_topic describe the endpoint opposite the node
    the relationships were requested for.
    """

    id: int | None
    source_id: str
    target_id: str
    type: str
    timestamp: datetime
    strength: float = 1.0
    metadata: Metadata | str | None = None
    other_category: str | None = None
    other_topic: str | None = None


@dataclass
class QueryLogEntry:
    """One recorded search against a memory tier."""

    id: int | None
    memory_type: MemoryType
    query: str
    timestamp: datetime
    result_count: int = 0
    duration_ms: int = 0


@dataclass
class EpisodeQuery:
    """Filter for episode listing. Time bounds are inclusive."""

    session_id: str | None = None
    types: tuple[str, ...] | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int = 50
    offset: int = 0


class PersistenceAdapter(ABC):
    """Repository interface shared by all memory tiers."""

    async def connect(self) -> None:
        """Open the backing storage."""
        return None

    async def close(self) -> None:
        """Release the backing storage."""
        return None

    # Short-term

    @abstractmethod
    async def put_context(self, entry: ContextEntry) -> None:
        """Insert or overwrite a context entry by key."""
        ...

    @abstractmethod
    async def get_context(self, key: str) -> ContextEntry | None:
        ...

    @abstractmethod
    async def touch_context(self, key: str, timestamp: datetime) -> None:
        ...

    @abstractmethod
    async def list_context(self, pattern: str | None = None) -> list[ContextEntry]:
        """All entries, newest first, optionally filtered by key substring."""
        ...

    @abstractmethod
    async def delete_context(self, key: str) -> bool:
        ...

    @abstractmethod
    async def purge_expired_context(self, now: datetime) -> int:
        ...

    # Episodic

    @abstractmethod
    async def insert_episode(self, episode: Episode) -> int:
        """Append an episode, return its assigned id."""
        ...

    @abstractmethod
    async def get_episode(self, episode_id: int) -> Episode | None:
        ...

    @abstractmethod
    async def query_episodes(self, query: EpisodeQuery) -> list[Episode]:
        """Filtered episodes, newest first."""
        ...

    @abstractmethod
    async def search_episodes(
        self,
        text: str,
        episode_type: str | None = None,
        session_id: str | None = None,
        min_importance: int | None = None,
        limit: int = 10,
    ) -> list[Episode]:
        """Substring search ordered by importance, then recency."""
        ...

    @abstractmethod
    async def update_episode_importance(self, episode_id: int, importance: int) -> bool:
        ...

    @abstractmethod
    async def insert_summary(self, summary: SessionSummary) -> int:
        ...

    @abstractmethod
    async def latest_summary(self, session_id: str) -> SessionSummary | None:
        """Summary with the latest end_time for the session."""
        ...

    # Semantic

    @abstractmethod
    async def get_node(self, node_id: str) -> KnowledgeNode | None:
        ...

    @abstractmethod
    async def get_node_by_key(self, category: str, topic: str) -> KnowledgeNode | None:
        ...

    @abstractmethod
    async def upsert_node(self, node: KnowledgeNode) -> str:
        """Insert, or overwrite the node with the same (category, topic).

        Returns the id of the stored node; an existing node keeps its id.
        """
        ...

    @abstractmethod
    async def nodes_by_category(self, category: str) -> list[KnowledgeNode]:
        ...

    @abstractmethod
    async def search_nodes(
        self, text: str, category: str | None = None, limit: int = 10
    ) -> list[KnowledgeNode]:
        """Case-insensitive substring match on topic or content."""
        ...

    @abstractmethod
    async def touch_nodes(self, node_ids: list[str], timestamp: datetime) -> None:
        ...

    @abstractmethod
    async def get_relationship(
        self, source_id: str, target_id: str, relationship_type: str
    ) -> Relationship | None:
        ...

    @abstractmethod
    async def upsert_relationship(self, relationship: Relationship) -> None:
        ...

    @abstractmethod
    async def relationships_for(
        self,
        node_id: str,
        direction: RelationshipDirection = RelationshipDirection.BOTH,
        relationship_type: str | None = None,
    ) -> list[Relationship]:
        ...

    # Diagnostics

    @abstractmethod
    async def log_query(self, entry: QueryLogEntry) -> None:
        ...

    @abstractmethod
    async def recent_queries(self, limit: int = 20) -> list[QueryLogEntry]:
        ...

    @abstractmethod
    async def counts(self) -> dict[str, int]:
        """Row count per table."""
        ...
