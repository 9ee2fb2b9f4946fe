"""
Episodic memory tier.

Append-mostly log of conversation turns and events, grouped by session.
Summaries are statistical digests (role counts, time span, frequent
words), never generated prose.
"""

import asyncio
import time
from collections import Counter
from datetime import datetime

from recall.core.logging import get_logger
from recall.memory.base import (
    CONVERSATION_ROLES,
    SESSION_SUMMARY_TYPE,
    Episode,
    EpisodeQuery,
    MemoryType,
    Metadata,
    PersistenceAdapter,
    QueryLogEntry,
    SessionSummary,
)
from recall.memory.short_term import ShortTermStore
from recall.memory.text import topic_words

logger = get_logger("memory.episodic")

# Upper bound when a whole session is summarized
SESSION_SCAN_LIMIT = 10_000


class EpisodicStore:
    """Episodic tier. Reads the active session id from the short-term tier."""

    def __init__(self, adapter: PersistenceAdapter, short_term: ShortTermStore):
        self._adapter = adapter
        self._short_term = short_term
        self._lock = asyncio.Lock()

    async def store_conversation(
        self,
        role: str,
        content: str,
        session_id: str | None = None,
        timestamp: datetime | None = None,
        metadata: Metadata | None = None,
        importance: int = 1,
    ) -> int | None:
        """Log a conversation turn, return its episode id."""
        return await self.store_episode(
            content,
            type=role,
            session_id=session_id,
            timestamp=timestamp,
            metadata=metadata,
            importance=importance,
        )

    async def store_episode(
        self,
        content: str,
        type: str = "event",
        session_id: str | None = None,
        timestamp: datetime | None = None,
        importance: int = 1,
        related_ids: list[int] | None = None,
        metadata: Metadata | None = None,
    ) -> int | None:
        """Log any episode. Missing session_id means the active session."""
        # Resolved before taking our lock: never hold two store locks at once
        session_id = session_id or await self._resolve_session_id()

        async with self._lock:
            try:
                episode_id = await self._adapter.insert_episode(
                    Episode(
                        id=None,
                        session_id=session_id,
                        type=type,
                        content=content,
                        timestamp=timestamp or datetime.now(),
                        importance=importance,
                        related_ids=related_ids,
                        metadata=metadata,
                    )
                )
                logger.debug(f"Stored {type} episode {episode_id} in {session_id}")
                return episode_id
            except Exception as e:
                logger.error(f"Failed to store episode: {e}")
                return None

    async def get_episode(self, episode_id: int) -> Episode | None:
        async with self._lock:
            try:
                return await self._adapter.get_episode(episode_id)
            except Exception as e:
                logger.error(f"Failed to get episode {episode_id}: {e}")
                return None

    async def get_conversations(
        self,
        session_id: str | None = None,
        role: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Episode]:
        """Conversation turns matching the filters, newest first."""
        query = EpisodeQuery(
            session_id=session_id,
            types=(role,) if role else CONVERSATION_ROLES,
            start_time=start_time,
            end_time=end_time,
            limit=max(limit, 0),
            offset=max(offset, 0),
        )
        async with self._lock:
            try:
                return await self._adapter.query_episodes(query)
            except Exception as e:
                logger.error(f"Failed to query conversations: {e}")
                return []

    async def get_recent_conversations(
        self, count: int = 10, session_id: str | None = None
    ) -> list[Episode]:
        return await self.get_conversations(session_id=session_id, limit=count)

    async def get_recent_episodes(self, count: int = 20) -> list[Episode]:
        """Most recent episodes of any type across sessions."""
        async with self._lock:
            try:
                return await self._adapter.query_episodes(EpisodeQuery(limit=max(count, 0)))
            except Exception as e:
                logger.error(f"Failed to get recent episodes: {e}")
                return []

    async def search_episodes(
        self,
        query: str,
        type: str | None = None,
        session_id: str | None = None,
        min_importance: int | None = None,
        limit: int = 10,
    ) -> list[Episode]:
        """Substring search, most important then most recent first."""
        async with self._lock:
            try:
                started = time.perf_counter()
                results = await self._adapter.search_episodes(
                    query, type, session_id, min_importance, limit
                )
                await self._log_query(query, len(results), started)
                return results
            except Exception as e:
                logger.error(f"Episode search failed: {e}")
                return []

    async def update_importance(self, episode_id: int, importance: int) -> bool:
        async with self._lock:
            try:
                return await self._adapter.update_episode_importance(episode_id, importance)
            except Exception as e:
                logger.error(f"Failed to update importance of episode {episode_id}: {e}")
                return False

    # Summaries

    def summarize_conversations(self, conversations: list[Episode]) -> str:
        """Role counts, time span and top topic words. Deterministic."""
        if not conversations:
            return "No conversations to summarize."

        roles = Counter(c.type for c in conversations)
        role_counts = ", ".join(f"{role}: {n}" for role, n in sorted(roles.items()))
        start = min(c.timestamp for c in conversations)
        end = max(c.timestamp for c in conversations)

        # Chronological order so word ties resolve by first mention
        ordered = sorted(conversations, key=lambda c: (c.timestamp, c.id or 0))
        topics = topic_words([c.content for c in ordered])

        lines = [
            f"Conversation with {len(conversations)} messages ({role_counts}).",
            f"Time span: {start.isoformat()} to {end.isoformat()}.",
            f"Main topics: {', '.join(topics) if topics else 'none'}.",
        ]
        return "\n".join(lines)

    async def store_summary(
        self,
        session_id: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        message_count: int,
    ) -> int | None:
        async with self._lock:
            try:
                return await self._adapter.insert_summary(
                    SessionSummary(
                        id=None,
                        session_id=session_id,
                        summary=summary,
                        start_time=start_time,
                        end_time=end_time,
                        message_count=message_count,
                    )
                )
            except Exception as e:
                logger.error(f"Failed to store summary for {session_id}: {e}")
                return None

    async def get_session_summary(self, session_id: str) -> SessionSummary | None:
        """The authoritative (latest end_time) summary for a session."""
        async with self._lock:
            try:
                return await self._adapter.latest_summary(session_id)
            except Exception as e:
                logger.error(f"Failed to get summary for {session_id}: {e}")
                return None

    async def summarize_current_session(self) -> SessionSummary | None:
        """Summarize and store the active session. None if it has no turns.

        Summary entries logged by earlier consolidations are not counted.
        """
        session_id = await self._short_term.get_session_id()
        if not session_id:
            return None

        conversations = [
            c
            for c in await self.get_conversations(session_id=session_id, limit=SESSION_SCAN_LIMIT)
            if c.kind != SESSION_SUMMARY_TYPE
        ]
        if not conversations:
            return None

        text = self.summarize_conversations(conversations)
        start = min(c.timestamp for c in conversations)
        end = max(c.timestamp for c in conversations)
        summary_id = await self.store_summary(session_id, text, start, end, len(conversations))
        if summary_id is None:
            return None

        logger.info(f"Summarized session {session_id} ({len(conversations)} messages)")
        return SessionSummary(
            id=summary_id,
            session_id=session_id,
            summary=text,
            start_time=start,
            end_time=end,
            message_count=len(conversations),
        )

    # Internal helpers

    async def _resolve_session_id(self) -> str:
        session_id = await self._short_term.get_session_id()
        if session_id:
            return session_id
        return await self._short_term.start_session()

    async def _log_query(self, query: str, result_count: int, started: float) -> None:
        try:
            await self._adapter.log_query(
                QueryLogEntry(
                    id=None,
                    memory_type=MemoryType.EPISODIC,
                    query=query,
                    timestamp=datetime.now(),
                    result_count=result_count,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )
            )
        except Exception as e:
            logger.warning(f"Failed to log episodic query: {e}")
