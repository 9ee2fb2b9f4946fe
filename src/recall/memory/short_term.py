"""
Short-term memory tier.

Session-scoped keyed values, the importance-ranked working context list,
and a bounded buffer of the most recent conversation turns. Every public
operation returns a safe default instead of raising.
"""

import asyncio
from collections import deque
from datetime import datetime
from typing import Any
from uuid import uuid4

from recall.core.logging import get_logger
from recall.memory.base import (
    ContextEntry,
    ConversationTurn,
    Metadata,
    PersistenceAdapter,
    WorkingContextItem,
)

logger = get_logger("memory.short_term")

WORKING_CONTEXT_KEY = "working_context"
CONVERSATION_KEY = "conversation_history"
SESSION_KEY = "session_id"

# Hard cap on turns kept in the ring buffer; older turns live in the episodic tier
CONVERSATION_TURN_CAP = 10


class ShortTermStore:
    """Short-term tier over a shared persistence adapter."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        working_context_limit: int = 10,
    ):
        self._adapter = adapter
        self._lock = asyncio.Lock()
        self._turns: deque[ConversationTurn] = deque(maxlen=CONVERSATION_TURN_CAP)
        self._working_context_limit = working_context_limit

    # Keyed context

    async def store_context(
        self,
        key: str,
        value: Any,
        expires_at: datetime | None = None,
        metadata: Metadata | None = None,
    ) -> bool:
        """Store a value under key, overwriting any previous entry."""
        async with self._lock:
            try:
                await self._write(key, value, expires_at, metadata)
                return True
            except Exception as e:
                logger.error(f"Failed to store context '{key}': {e}")
                return False

    async def get_context(self, key: str) -> Any | None:
        """Get a live value; expired entries are removed and read as missing."""
        async with self._lock:
            try:
                entry = await self._read(key)
                if entry is None:
                    return None
                await self._adapter.touch_context(key, datetime.now())
                return entry.value
            except Exception as e:
                logger.error(f"Failed to read context '{key}': {e}")
                return None

    async def list_context(self, pattern: str | None = None) -> dict[str, Any]:
        """Live values keyed by name, most recently touched first."""
        async with self._lock:
            try:
                now = datetime.now()
                entries = await self._adapter.list_context(pattern)
                return {e.key: e.value for e in entries if not e.is_expired(now)}
            except Exception as e:
                logger.error(f"Failed to list context: {e}")
                return {}

    async def remove_context(self, key: str) -> bool:
        async with self._lock:
            try:
                return await self._adapter.delete_context(key)
            except Exception as e:
                logger.error(f"Failed to remove context '{key}': {e}")
                return False

    async def clear_context(self, name: str, item_id: str | None = None) -> bool:
        """Remove a context entry, or a single item from a list-valued entry."""
        async with self._lock:
            try:
                if item_id is None:
                    if name == CONVERSATION_KEY:
                        self._turns.clear()
                    return await self._adapter.delete_context(name)

                entry = await self._read(name)
                if entry is None or not isinstance(entry.value, list):
                    return False

                remaining = [
                    item
                    for item in entry.value
                    if not (isinstance(item, dict) and item.get("id") == item_id)
                ]
                if len(remaining) == len(entry.value):
                    return False

                await self._write(name, remaining, entry.expires_at, entry.metadata)
                return True
            except Exception as e:
                logger.error(f"Failed to clear context '{name}': {e}")
                return False

    async def purge_expired(self) -> int:
        """Delete expired keyed entries, return how many were removed."""
        async with self._lock:
            try:
                removed = await self._adapter.purge_expired_context(datetime.now())
                if removed:
                    logger.debug(f"Purged {removed} expired context entries")
                return removed
            except Exception as e:
                logger.error(f"Failed to purge expired context: {e}")
                return 0

    # Working context

    async def add_working_context(
        self,
        topic: str,
        details: str,
        importance: int = 3,
        expires_at: datetime | None = None,
    ) -> WorkingContextItem | None:
        """Append an item to the working context. Importance is clamped to 1-5."""
        async with self._lock:
            try:
                item = WorkingContextItem(
                    id=f"ctx_{uuid4().hex[:12]}",
                    topic=topic,
                    details=details,
                    importance=max(1, min(5, int(importance))),
                    expires_at=expires_at,
                )
                items = await self._load_items()
                items.append(item)
                await self._save_items(items)
                logger.debug(f"Working context += {topic} (importance {item.importance})")
                return item
            except Exception as e:
                logger.error(f"Failed to add working context '{topic}': {e}")
                return None

    async def get_working_context(
        self,
        topic: str | None = None,
        min_importance: int = 0,
        max_items: int | None = None,
    ) -> list[WorkingContextItem]:
        """Live items, most important first.

        Equal importance keeps insertion order.
        """
        limit = self._working_context_limit if max_items is None else max_items
        async with self._lock:
            try:
                now = datetime.now()
                items = [
                    item
                    for item in await self._load_items()
                    if (topic is None or item.topic == topic)
                    and item.importance >= min_importance
                    and not item.is_expired(now)
                ]
                items.sort(key=lambda item: item.importance, reverse=True)
                return items[:limit]
            except Exception as e:
                logger.error(f"Failed to read working context: {e}")
                return []

    async def prune_memory(self, target_size: int | None = None) -> int:
        """Evict expired items, then the least important, down to target_size.

        target_size defaults to the working context limit. Survivors are
        stored most important first. Returns items removed.
        """
        if target_size is None:
            target_size = self._working_context_limit
        async with self._lock:
            try:
                now = datetime.now()
                items = await self._load_items()
                original = len(items)

                items = [item for item in items if not item.is_expired(now)]

                if len(items) > target_size:
                    items.sort(key=lambda item: item.importance)
                    items = items[len(items) - max(target_size, 0):]

                items.sort(key=lambda item: item.importance, reverse=True)
                await self._save_items(items)

                removed = original - len(items)
                if removed:
                    logger.info(f"Pruned {removed} working context items ({len(items)} kept)")
                return removed
            except Exception as e:
                logger.error(f"Failed to prune working context: {e}")
                return 0

    # Conversation buffer

    async def add_conversation_turn(self, turn: ConversationTurn) -> bool:
        """Append a turn; only the most recent turns are kept."""
        async with self._lock:
            try:
                self._turns.append(turn)
                await self._write(CONVERSATION_KEY, [t.to_dict() for t in self._turns])
                return True
            except Exception as e:
                logger.error(f"Failed to add conversation turn: {e}")
                return False

    async def get_conversation_context(self, max_turns: int = 10) -> list[ConversationTurn]:
        """Most recent turns in chronological order."""
        async with self._lock:
            if max_turns <= 0:
                return []
            return list(self._turns)[-max_turns:]

    # Session

    async def get_session_id(self) -> str | None:
        async with self._lock:
            try:
                entry = await self._read(SESSION_KEY)
                return str(entry.value) if entry and entry.value else None
            except Exception as e:
                logger.error(f"Failed to read session id: {e}")
                return None

    async def start_session(self, session_id: str | None = None) -> str:
        """Make session_id (or a fresh one) the active session."""
        session_id = session_id or f"session_{uuid4().hex[:12]}"
        async with self._lock:
            try:
                await self._write(SESSION_KEY, session_id)
                logger.info(f"Session started: {session_id}")
            except Exception as e:
                logger.error(f"Failed to persist session id: {e}")
        return session_id

    async def end_session(self) -> bool:
        """Drop session-scoped state: working context, turns, session id."""
        async with self._lock:
            try:
                self._turns.clear()
                for key in (WORKING_CONTEXT_KEY, CONVERSATION_KEY, SESSION_KEY):
                    await self._adapter.delete_context(key)
                return True
            except Exception as e:
                logger.error(f"Failed to end session: {e}")
                return False

    # Internal helpers (caller holds the lock)

    async def _read(self, key: str) -> ContextEntry | None:
        entry = await self._adapter.get_context(key)
        if entry is None:
            return None
        if entry.is_expired():
            await self._adapter.delete_context(key)
            logger.debug(f"Context '{key}' expired")
            return None
        return entry

    async def _write(
        self,
        key: str,
        value: Any,
        expires_at: datetime | None = None,
        metadata: Metadata | str | None = None,
    ) -> None:
        await self._adapter.put_context(
            ContextEntry(
                key=key,
                value=value,
                timestamp=datetime.now(),
                expires_at=expires_at,
                metadata=metadata,
            )
        )

    async def _load_items(self) -> list[WorkingContextItem]:
        entry = await self._read(WORKING_CONTEXT_KEY)
        if entry is None or not isinstance(entry.value, list):
            return []

        items = []
        for raw in entry.value:
            try:
                items.append(WorkingContextItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed working context item: {e}")
        return items

    async def _save_items(self, items: list[WorkingContextItem]) -> None:
        await self._write(WORKING_CONTEXT_KEY, [item.to_dict() for item in items])
