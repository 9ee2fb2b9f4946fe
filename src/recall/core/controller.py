"""
Memory controller - cross-tier orchestration.

Owns no records. Promotes important short-term items into durable tiers,
extracts knowledge from recent episodes, assembles enriched context for a
query, and runs the per-interaction workflow.
"""

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from recall.core.config import Settings, get_settings
from recall.core.logging import get_logger
from recall.memory.base import (
    SESSION_SUMMARY_TYPE,
    SYNTHESIZED_RESPONSE_TYPE,
    ConversationTurn,
    Episode,
    KnowledgeNode,
    PersistenceAdapter,
    WorkingContextItem,
)
from recall.memory.episodic import EpisodicStore
from recall.memory.fallback import open_adapter
from recall.memory.semantic import SemanticStore
from recall.memory.short_term import ShortTermStore
from recall.memory.text import CODE_PATTERNS, TROUBLESHOOTING, classify, query_keywords

logger = get_logger("core.controller")

ENRICHED_CONTEXT_KEY = "enriched_context"
CURRENT_QUERY_KEY = "current_query"
LAST_RESPONSE_KEY = "last_response"

WORKING_CONTEXT_CATEGORY = "working_context"
SHORT_TERM_SOURCE = "short_term_memory"
EPISODIC_SOURCE = "episodic_memory"
EXTRACTED_CATEGORY = "extracted_knowledge"

BUCKET_IMPORTANCE = {TROUBLESHOOTING: "high", CODE_PATTERNS: "medium"}

FALLBACK_RESPONSE = "Sorry, I couldn't process that request right now. Please try again."

# Consolidation reads the whole working context, not the display window
CONSOLIDATION_SCAN_LIMIT = 1000


class ControllerState(Enum):
    IDLE = "idle"
    ENRICHING = "enriching"
    RESPONDING = "responding"
    CONSOLIDATING = "consolidating"


def importance_label(importance: int) -> str:
    """Map 1-5 importance onto the label stored with knowledge."""
    if importance >= 5:
        return "high"
    if importance >= 3:
        return "medium"
    return "low"


@dataclass
class EnrichedContext:
    """Everything the memory tiers know that bears on one query."""

    query: str
    working_context: list[WorkingContextItem] = field(default_factory=list)
    recent_conversations: list[Episode] = field(default_factory=list)
    relevant_knowledge: list[KnowledgeNode] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "working_context": [item.to_dict() for item in self.working_context],
            "recent_conversations": [asdict(e) for e in self.recent_conversations],
            "relevant_knowledge": [asdict(n) for n in self.relevant_knowledge],
            "timestamp": self.timestamp.isoformat(),
        }


class MemoryController:
    """Coordinates the short-term, episodic and semantic tiers."""

    def __init__(
        self,
        short_term: ShortTermStore,
        episodic: EpisodicStore,
        semantic: SemanticStore,
        settings: Settings | None = None,
        adapter: PersistenceAdapter | None = None,
    ):
        self.short_term = short_term
        self.episodic = episodic
        self.semantic = semantic
        self.settings = settings or get_settings()
        self._adapter = adapter
        self._state = ControllerState.IDLE
        self._interaction_count = 0

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def interaction_count(self) -> int:
        return self._interaction_count

    async def close(self) -> None:
        if self._adapter:
            await self._adapter.close()

    async def consolidate_memory(self) -> dict:
        """Promote important working context items and persist the session summary."""
        result = {"knowledge_promoted": 0, "summary_stored": False}

        try:
            # Short-term lock is released before any durable write starts
            items = await self.short_term.get_working_context(
                min_importance=self.settings.consolidation_min_importance,
                max_items=CONSOLIDATION_SCAN_LIMIT,
            )

            for item in items:
                node_id = await self.semantic.store_knowledge(
                    WORKING_CONTEXT_CATEGORY,
                    item.topic,
                    item.details,
                    source=SHORT_TERM_SOURCE,
                    metadata={
                        "importance": importance_label(item.importance),
                        "working_context_id": item.id,
                    },
                )
                if node_id:
                    result["knowledge_promoted"] += 1

            summary = await self.episodic.summarize_current_session()
            if summary:
                episode_id = await self.episodic.store_conversation(
                    role="system",
                    content=summary.summary,
                    session_id=summary.session_id,
                    metadata={"type": SESSION_SUMMARY_TYPE, "summary_id": summary.id},
                )
                result["summary_stored"] = episode_id is not None

            logger.info(
                f"Consolidation: promoted {result['knowledge_promoted']} items, "
                f"summary stored: {result['summary_stored']}"
            )
        except Exception as e:
            logger.error(f"Consolidation failed: {e}")

        return result

    async def extract_knowledge(self) -> dict:
        """Classify recent episodes into the code/troubleshooting topic buckets.

        Each bucket is a single node; the latest matching episode overwrites it.
        Entries the controller wrote itself are skipped.
        """
        result = {CODE_PATTERNS: 0, TROUBLESHOOTING: 0}

        try:
            episodes = await self.episodic.get_recent_episodes(self.settings.knowledge_scan_window)
            # Oldest first so the newest episode ends up in the bucket
            for episode in reversed(episodes):
                if episode.kind in (SESSION_SUMMARY_TYPE, SYNTHESIZED_RESPONSE_TYPE):
                    continue

                for bucket in classify(episode.content):
                    node_id = await self.semantic.store_knowledge(
                        EXTRACTED_CATEGORY,
                        bucket,
                        episode.content,
                        source=EPISODIC_SOURCE,
                        metadata={
                            "importance": BUCKET_IMPORTANCE[bucket],
                            "episode_id": episode.id,
                            "session_id": episode.session_id,
                            "role": episode.type,
                        },
                    )
                    if node_id:
                        result[bucket] += 1

            logger.info(
                f"Knowledge extraction: {result[CODE_PATTERNS]} code patterns, "
                f"{result[TROUBLESHOOTING]} troubleshooting entries"
            )
        except Exception as e:
            logger.error(f"Knowledge extraction failed: {e}")

        return result

    async def enrich_context(self, query: str) -> EnrichedContext:
        """Gather working context, recent turns and keyword-matched knowledge."""
        context = EnrichedContext(query=query)

        try:
            context.working_context = await self.short_term.get_working_context()

            session_id = await self.short_term.get_session_id()
            context.recent_conversations = await self.episodic.get_recent_conversations(
                self.settings.recent_conversation_count, session_id=session_id
            )

            for keyword in query_keywords(query):
                context.relevant_knowledge.extend(
                    await self.semantic.search(
                        keyword, limit=self.settings.knowledge_hits_per_keyword
                    )
                )

            await self.short_term.store_context(ENRICHED_CONTEXT_KEY, context.to_dict())
        except Exception as e:
            logger.error(f"Context enrichment failed: {e}")

        return context

    async def process_interaction(
        self,
        query: str,
        callback: Callable[[str], Awaitable[None]] | None = None,
    ) -> str:
        """Run one interaction through every tier and return the response.

        Every consolidation_interval-th interaction also consolidates and
        extracts knowledge. Failures yield FALLBACK_RESPONSE, never an exception.
        """
        try:
            # 1-2. Record the query
            await self.short_term.store_context(CURRENT_QUERY_KEY, query)
            await self.short_term.add_conversation_turn(ConversationTurn(role="user", content=query))
            await self.episodic.store_conversation(role="user", content=query)

            # 3. Enrich
            self._state = ControllerState.ENRICHING
            context = await self.enrich_context(query)

            # 4-6. Respond and record the response
            self._state = ControllerState.RESPONDING
            response = self._synthesize_response(context)
            await self.short_term.store_context(LAST_RESPONSE_KEY, response)
            await self.short_term.add_conversation_turn(
                ConversationTurn(role="assistant", content=response)
            )
            await self.episodic.store_conversation(
                role="assistant",
                content=response,
                metadata={"type": SYNTHESIZED_RESPONSE_TYPE},
            )

            # 7-8. Count, and periodically consolidate
            self._interaction_count += 1
            if self._interaction_count % self.settings.consolidation_interval == 0:
                self._state = ControllerState.CONSOLIDATING
                await self.consolidate_memory()
                await self.extract_knowledge()
        except Exception as e:
            logger.error(f"Interaction failed: {e}")
            response = FALLBACK_RESPONSE
        finally:
            self._state = ControllerState.IDLE

        if callback:
            try:
                await callback(response)
            except Exception as e:
                logger.warning(f"Interaction callback failed: {e}")

        return response

    def _synthesize_response(self, context: EnrichedContext) -> str:
        """Placeholder response describing what memory contributed."""
        parts = [
            f"Processed: {context.query}",
            f"Working context items: {len(context.working_context)}",
            f"Recent messages: {len(context.recent_conversations)}",
            f"Related knowledge: {len(context.relevant_knowledge)}",
        ]
        if context.relevant_knowledge:
            topics = ", ".join(f"{n.category}/{n.topic}" for n in context.relevant_knowledge[:3])
            parts.append(f"Top matches: {topics}")
        return "\n".join(parts)


async def create_memory(settings: Settings | None = None) -> MemoryController:
    """Open storage and wire the three tiers into a controller."""
    settings = settings or get_settings()
    adapter = await open_adapter(settings)
    short_term = ShortTermStore(
        adapter,
        working_context_limit=settings.working_context_limit,
    )
    episodic = EpisodicStore(adapter, short_term)
    semantic = SemanticStore(adapter)
    return MemoryController(short_term, episodic, semantic, settings=settings, adapter=adapter)
