"""SQLite persistence adapter for all memory tiers."""

import sqlite3
from datetime import datetime
from pathlib import Path

import aiosqlite

from recall.core.logging import get_logger
from recall.memory.base import (
    ContextEntry,
    Episode,
    EpisodeQuery,
    KnowledgeNode,
    MemoryType,
    PersistenceAdapter,
    QueryLogEntry,
    Relationship,
    RelationshipDirection,
    SessionSummary,
)
from recall.memory.codec import (
    decode_ids,
    decode_metadata,
    decode_value,
    encode_ids,
    encode_metadata,
    encode_value,
)

logger = get_logger("memory.store")


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Short-term memory: keyed session values
CREATE TABLE IF NOT EXISTS short_term_memory (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    timestamp DATETIME NOT NULL,
    expiry_time DATETIME,
    metadata TEXT  -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_stm_timestamp ON short_term_memory(timestamp);
CREATE INDEX IF NOT EXISTS idx_stm_expiry ON short_term_memory(expiry_time);

-- Episodic memory: conversation turns and events
CREATE TABLE IF NOT EXISTS episodic_memory (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp DATETIME NOT NULL,
    importance INTEGER DEFAULT 1,
    related_ids TEXT,  -- JSON array
    metadata TEXT  -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_em_timestamp ON episodic_memory(timestamp);
CREATE INDEX IF NOT EXISTS idx_em_conversation ON episodic_memory(conversation_id);
CREATE INDEX IF NOT EXISTS idx_em_importance ON episodic_memory(importance);
CREATE INDEX IF NOT EXISTS idx_em_type ON episodic_memory(type);

-- Session summaries derived from episodic memory
CREATE TABLE IF NOT EXISTS conversation_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    start_time DATETIME NOT NULL,
    end_time DATETIME NOT NULL,
    message_count INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cs_session ON conversation_summaries(session_id, end_time);

-- Semantic memory: knowledge nodes
CREATE TABLE IF NOT EXISTS semantic_knowledge (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    topic TEXT NOT NULL,
    content TEXT NOT NULL,
    confidence REAL DEFAULT 1.0,
    timestamp DATETIME NOT NULL,
    last_accessed DATETIME,
    source TEXT,
    metadata TEXT,  -- JSON object
    UNIQUE(category, topic)
);

CREATE INDEX IF NOT EXISTS idx_sk_category ON semantic_knowledge(category);
CREATE INDEX IF NOT EXISTS idx_sk_last_accessed ON semantic_knowledge(last_accessed);

-- Semantic memory: relationships between nodes
CREATE TABLE IF NOT EXISTS knowledge_relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id TEXT NOT NULL,
    target_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    strength REAL DEFAULT 1.0,
    timestamp DATETIME NOT NULL,
    metadata TEXT,  -- JSON object
    UNIQUE(source_id, target_id, relationship_type),
    FOREIGN KEY (source_id) REFERENCES semantic_knowledge(id),
    FOREIGN KEY (target_id) REFERENCES semantic_knowledge(id)
);

CREATE INDEX IF NOT EXISTS idx_kr_source ON knowledge_relationships(source_id);
CREATE INDEX IF NOT EXISTS idx_kr_target ON knowledge_relationships(target_id);

-- Search diagnostics
CREATE TABLE IF NOT EXISTS memory_queries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_type TEXT NOT NULL,
    query TEXT NOT NULL,
    timestamp DATETIME NOT NULL,
    result_count INTEGER DEFAULT 0,
    duration_ms INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_mq_timestamp ON memory_queries(timestamp);
"""

TABLES = (
    "short_term_memory",
    "episodic_memory",
    "conversation_summaries",
    "semantic_knowledge",
    "knowledge_relationships",
    "memory_queries",
)

CONTEXT_COLUMNS = "key, value, timestamp, expiry_time, metadata"
EPISODE_COLUMNS = (
    "id, conversation_id, type, content, timestamp, importance, related_ids, metadata"
)
SUMMARY_COLUMNS = "id, session_id, summary, start_time, end_time, message_count"
NODE_COLUMNS = (
    "id, category, topic, content, confidence, timestamp, last_accessed, source, metadata"
)


def _like_pattern(text: str) -> str:
    """Escape LIKE wildcards so the query matches as a plain substring."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _py_lower(value: str | None) -> str | None:
    """Unicode-aware LOWER(); SQLite's own only folds ASCII."""
    return value.lower() if value is not None else None


def _row_to_context(row) -> ContextEntry:
    return ContextEntry(
        key=row[0],
        value=decode_value(row[1]),
        timestamp=row[2],
        expires_at=row[3],
        metadata=decode_metadata(row[4]),
    )


def _row_to_episode(row) -> Episode:
    return Episode(
        id=row[0],
        session_id=row[1],
        type=row[2],
        content=row[3],
        timestamp=row[4],
        importance=row[5],
        related_ids=decode_ids(row[6]),
        metadata=decode_metadata(row[7]),
    )


def _row_to_summary(row) -> SessionSummary:
    return SessionSummary(
        id=row[0],
        session_id=row[1],
        summary=row[2],
        start_time=row[3],
        end_time=row[4],
        message_count=row[5],
    )


def _row_to_node(row) -> KnowledgeNode:
    return KnowledgeNode(
        id=row[0],
        category=row[1],
        topic=row[2],
        content=row[3],
        confidence=row[4],
        timestamp=row[5],
        last_accessed=row[6] if row[6] else row[5],
        source=row[7],
        metadata=decode_metadata(row[8]),
    )


class SQLiteMemoryAdapter(PersistenceAdapter):
    """aiosqlite-backed storage for the short-term, episodic and semantic tiers."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Use detect_types to enable our custom datetime converters
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        await self._conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        await self._conn.execute("PRAGMA foreign_keys = ON")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to memory database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Memory database not connected. Call connect() first.")
        return self._conn

    # Short-term operations

    async def put_context(self, entry: ContextEntry) -> None:
        await self.conn.execute(
            """INSERT INTO short_term_memory (key, value, timestamp, expiry_time, metadata)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   timestamp = excluded.timestamp,
                   expiry_time = excluded.expiry_time,
                   metadata = excluded.metadata""",
            (
                entry.key,
                encode_value(entry.value),
                entry.timestamp,
                entry.expires_at,
                encode_metadata(entry.metadata),
            ),
        )
        await self.conn.commit()

    async def get_context(self, key: str) -> ContextEntry | None:
        async with self.conn.execute(
            f"SELECT {CONTEXT_COLUMNS} FROM short_term_memory WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_context(row) if row else None

    async def touch_context(self, key: str, timestamp: datetime) -> None:
        await self.conn.execute(
            "UPDATE short_term_memory SET timestamp = ? WHERE key = ?", (timestamp, key)
        )
        await self.conn.commit()

    async def list_context(self, pattern: str | None = None) -> list[ContextEntry]:
        sql = f"SELECT {CONTEXT_COLUMNS} FROM short_term_memory"
        params: list = []
        if pattern:
            sql += " WHERE py_lower(key) LIKE ? ESCAPE '\\'"
            params.append(_like_pattern(pattern))
        sql += " ORDER BY timestamp DESC"

        async with self.conn.execute(sql, params) as cursor:
            return [_row_to_context(row) async for row in cursor]

    async def delete_context(self, key: str) -> bool:
        cursor = await self.conn.execute("DELETE FROM short_term_memory WHERE key = ?", (key,))
        await self.conn.commit()
        return cursor.rowcount > 0

    async def purge_expired_context(self, now: datetime) -> int:
        cursor = await self.conn.execute(
            "DELETE FROM short_term_memory WHERE expiry_time IS NOT NULL AND expiry_time < ?",
            (now,),
        )
        await self.conn.commit()
        return cursor.rowcount

    # Episodic operations

    async def insert_episode(self, episode: Episode) -> int:
        cursor = await self.conn.execute(
            """INSERT INTO episodic_memory
               (conversation_id, type, content, timestamp, importance, related_ids, metadata)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                episode.session_id,
                episode.type,
                episode.content,
                episode.timestamp,
                episode.importance,
                encode_ids(episode.related_ids),
                encode_metadata(episode.metadata),
            ),
        )
        await self.conn.commit()
        return cursor.lastrowid

    async def get_episode(self, episode_id: int) -> Episode | None:
        async with self.conn.execute(
            f"SELECT {EPISODE_COLUMNS} FROM episodic_memory WHERE id = ?", (episode_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_episode(row) if row else None

    async def query_episodes(self, query: EpisodeQuery) -> list[Episode]:
        conditions = []
        params: list = []

        if query.session_id is not None:
            conditions.append("conversation_id = ?")
            params.append(query.session_id)
        if query.types:
            conditions.append(f"type IN ({', '.join('?' for _ in query.types)})")
            params.extend(query.types)
        if query.start_time is not None:
            conditions.append("timestamp >= ?")
            params.append(query.start_time)
        if query.end_time is not None:
            conditions.append("timestamp <= ?")
            params.append(query.end_time)

        sql = f"SELECT {EPISODE_COLUMNS} FROM episodic_memory"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([query.limit, query.offset])

        async with self.conn.execute(sql, params) as cursor:
            return [_row_to_episode(row) async for row in cursor]

    async def search_episodes(
        self,
        text: str,
        episode_type: str | None = None,
        session_id: str | None = None,
        min_importance: int | None = None,
        limit: int = 10,
    ) -> list[Episode]:
        sql = (
            f"SELECT {EPISODE_COLUMNS} FROM episodic_memory"
            " WHERE py_lower(content) LIKE ? ESCAPE '\\'"
        )
        params: list = [_like_pattern(text)]

        if episode_type:
            sql += " AND type = ?"
            params.append(episode_type)
        if session_id:
            sql += " AND conversation_id = ?"
            params.append(session_id)
        if min_importance is not None:
            sql += " AND importance >= ?"
            params.append(min_importance)

        sql += " ORDER BY importance DESC, timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        async with self.conn.execute(sql, params) as cursor:
            return [_row_to_episode(row) async for row in cursor]

    async def update_episode_importance(self, episode_id: int, importance: int) -> bool:
        cursor = await self.conn.execute(
            "UPDATE episodic_memory SET importance = ? WHERE id = ?", (importance, episode_id)
        )
        await self.conn.commit()
        return cursor.rowcount > 0

    async def insert_summary(self, summary: SessionSummary) -> int:
        cursor = await self.conn.execute(
            """INSERT INTO conversation_summaries
               (session_id, summary, start_time, end_time, message_count)
               VALUES (?, ?, ?, ?, ?)""",
            (
                summary.session_id,
                summary.summary,
                summary.start_time,
                summary.end_time,
                summary.message_count,
            ),
        )
        await self.conn.commit()
        return cursor.lastrowid

    async def latest_summary(self, session_id: str) -> SessionSummary | None:
        async with self.conn.execute(
            f"""SELECT {SUMMARY_COLUMNS} FROM conversation_summaries
                WHERE session_id = ?
                ORDER BY end_time DESC, id DESC LIMIT 1""",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_summary(row) if row else None

    # Semantic operations

    async def get_node(self, node_id: str) -> KnowledgeNode | None:
        async with self.conn.execute(
            f"SELECT {NODE_COLUMNS} FROM semantic_knowledge WHERE id = ?", (node_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_node(row) if row else None

    async def get_node_by_key(self, category: str, topic: str) -> KnowledgeNode | None:
        async with self.conn.execute(
            f"SELECT {NODE_COLUMNS} FROM semantic_knowledge WHERE category = ? AND topic = ?",
            (category, topic),
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_node(row) if row else None

    async def upsert_node(self, node: KnowledgeNode) -> str:
        await self.conn.execute(
            """INSERT INTO semantic_knowledge
               (id, category, topic, content, confidence, timestamp, last_accessed, source, metadata)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(category, topic) DO UPDATE SET
                   content = excluded.content,
                   confidence = excluded.confidence,
                   timestamp = excluded.timestamp,
                   source = excluded.source,
                   metadata = excluded.metadata""",
            (
                node.id,
                node.category,
                node.topic,
                node.content,
                node.confidence,
                node.timestamp,
                node.last_accessed,
                node.source,
                encode_metadata(node.metadata),
            ),
        )
        await self.conn.commit()

        async with self.conn.execute(
            "SELECT id FROM semantic_knowledge WHERE category = ? AND topic = ?",
            (node.category, node.topic),
        ) as cursor:
            row = await cursor.fetchone()
            return row[0]

    async def nodes_by_category(self, category: str) -> list[KnowledgeNode]:
        async with self.conn.execute(
            f"SELECT {NODE_COLUMNS} FROM semantic_knowledge WHERE category = ? ORDER BY topic",
            (category,),
        ) as cursor:
            return [_row_to_node(row) async for row in cursor]

    async def search_nodes(
        self, text: str, category: str | None = None, limit: int = 10
    ) -> list[KnowledgeNode]:
        pattern = _like_pattern(text)
        sql = f"""SELECT {NODE_COLUMNS} FROM semantic_knowledge
                  WHERE (py_lower(topic) LIKE ? ESCAPE '\\' OR py_lower(content) LIKE ? ESCAPE '\\')"""
        params: list = [pattern, pattern]

        if category:
            sql += " AND category = ?"
            params.append(category)

        # rowid keeps insertion order for full ties
        sql += " ORDER BY confidence DESC, last_accessed DESC, rowid ASC LIMIT ?"
        params.append(limit)

        async with self.conn.execute(sql, params) as cursor:
            return [_row_to_node(row) async for row in cursor]

    async def touch_nodes(self, node_ids: list[str], timestamp: datetime) -> None:
        if not node_ids:
            return
        await self.conn.executemany(
            "UPDATE semantic_knowledge SET last_accessed = ? WHERE id = ?",
            [(timestamp, node_id) for node_id in node_ids],
        )
        await self.conn.commit()

    async def get_relationship(
        self, source_id: str, target_id: str, relationship_type: str
    ) -> Relationship | None:
        async with self.conn.execute(
            """SELECT id, source_id, target_id, relationship_type, strength, timestamp, metadata
               FROM knowledge_relationships
               WHERE source_id = ? AND target_id = ? AND relationship_type = ?""",
            (source_id, target_id, relationship_type),
        ) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            return Relationship(
                id=row[0],
                source_id=row[1],
                target_id=row[2],
                type=row[3],
                strength=row[4],
                timestamp=row[5],
                metadata=decode_metadata(row[6]),
            )

    async def upsert_relationship(self, relationship: Relationship) -> None:
        await self.conn.execute(
            """INSERT INTO knowledge_relationships
               (source_id, target_id, relationship_type, strength, timestamp, metadata)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(source_id, target_id, relationship_type) DO UPDATE SET
                   strength = excluded.strength,
                   timestamp = excluded.timestamp,
                   metadata = excluded.metadata""",
            (
                relationship.source_id,
                relationship.target_id,
                relationship.type,
                relationship.strength,
                relationship.timestamp,
                encode_metadata(relationship.metadata),
            ),
        )
        await self.conn.commit()

    async def relationships_for(
        self,
        node_id: str,
        direction: RelationshipDirection = RelationshipDirection.BOTH,
        relationship_type: str | None = None,
    ) -> list[Relationship]:
        sql = """SELECT kr.id, kr.source_id, kr.target_id, kr.relationship_type,
                        kr.strength, kr.timestamp, kr.metadata,
                        t.category, t.topic, s.category, s.topic
                 FROM knowledge_relationships kr
                 LEFT JOIN semantic_knowledge t ON kr.target_id = t.id
                 LEFT JOIN semantic_knowledge s ON kr.source_id = s.id"""
        params: list = []

        if direction == RelationshipDirection.OUTGOING:
            sql += " WHERE kr.source_id = ?"
            params.append(node_id)
        elif direction == RelationshipDirection.INCOMING:
            sql += " WHERE kr.target_id = ?"
            params.append(node_id)
        else:
            sql += " WHERE (kr.source_id = ? OR kr.target_id = ?)"
            params.extend([node_id, node_id])

        if relationship_type:
            sql += " AND kr.relationship_type = ?"
            params.append(relationship_type)

        sql += " ORDER BY kr.strength DESC, kr.timestamp DESC, kr.id ASC"

        results = []
        async with self.conn.execute(sql, params) as cursor:
            async for row in cursor:
                outgoing = row[1] == node_id and direction != RelationshipDirection.INCOMING
                results.append(
                    Relationship(
                        id=row[0],
                        source_id=row[1],
                        target_id=row[2],
                        type=row[3],
                        strength=row[4],
                        timestamp=row[5],
                        metadata=decode_metadata(row[6]),
                        other_category=row[7] if outgoing else row[9],
                        other_topic=row[8] if outgoing else row[10],
                    )
                )
        return results

    # Diagnostics

    async def log_query(self, entry: QueryLogEntry) -> None:
        await self.conn.execute(
            """INSERT INTO memory_queries (memory_type, query, timestamp, result_count, duration_ms)
               VALUES (?, ?, ?, ?, ?)""",
            (
                entry.memory_type.value,
                entry.query,
                entry.timestamp,
                entry.result_count,
                entry.duration_ms,
            ),
        )
        await self.conn.commit()

    async def recent_queries(self, limit: int = 20) -> list[QueryLogEntry]:
        async with self.conn.execute(
            """SELECT id, memory_type, query, timestamp, result_count, duration_ms
               FROM memory_queries ORDER BY timestamp DESC, id DESC LIMIT ?""",
            (limit,),
        ) as cursor:
            return [
                QueryLogEntry(
                    id=row[0],
                    memory_type=MemoryType(row[1]),
                    query=row[2],
                    timestamp=row[3],
                    result_count=row[4],
                    duration_ms=row[5],
                )
                async for row in cursor
            ]

    async def counts(self) -> dict[str, int]:
        result = {}
        for table in TABLES:
            async with self.conn.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
                row = await cursor.fetchone()
                result[table] = row[0]
        return result
