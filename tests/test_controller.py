"""Tests for the memory controller workflow."""

import pytest

from recall.core.config import Settings
from recall.core.controller import (
    ENRICHED_CONTEXT_KEY,
    EXTRACTED_CATEGORY,
    FALLBACK_RESPONSE,
    ControllerState,
    MemoryController,
    create_memory,
    importance_label,
)
from recall.memory.fallback import FallbackAdapter
from recall.memory.inmemory import InMemoryAdapter
from recall.memory.text import CODE_PATTERNS, TROUBLESHOOTING


@pytest.fixture
def controller(short_term, episodic, semantic, settings) -> MemoryController:
    return MemoryController(short_term, episodic, semantic, settings=settings)


def test_importance_label():
    assert [importance_label(i) for i in range(1, 6)] == ["low", "low", "medium", "medium", "high"]


@pytest.mark.asyncio
async def test_extract_knowledge_both_buckets(controller: MemoryController):
    episode_id = await controller.episodic.store_conversation(
        "user", "there is a bug in the function"
    )
    await controller.episodic.store_conversation("user", "nice weather today")

    counts = await controller.extract_knowledge()
    assert counts == {CODE_PATTERNS: 1, TROUBLESHOOTING: 1}

    trouble = await controller.semantic.get_knowledge(EXTRACTED_CATEGORY, TROUBLESHOOTING)
    assert trouble.content == "there is a bug in the function"
    assert trouble.source == "episodic_memory"
    assert trouble.metadata["importance"] == "high"
    assert trouble.metadata["episode_id"] == episode_id

    code = await controller.semantic.get_knowledge(EXTRACTED_CATEGORY, CODE_PATTERNS)
    assert code.metadata["importance"] == "medium"


@pytest.mark.asyncio
async def test_extract_knowledge_one_node_per_bucket(controller: MemoryController, adapter):
    """One matching interaction gives one node per bucket, built from the user turn."""
    await controller.process_interaction("there is a bug in the function")
    await controller.extract_knowledge()

    assert (await adapter.counts())["semantic_knowledge"] == 2
    nodes = await controller.semantic.get_by_category(EXTRACTED_CATEGORY)
    assert [n.topic for n in nodes] == [CODE_PATTERNS, TROUBLESHOOTING]
    assert all(n.content == "there is a bug in the function" for n in nodes)


@pytest.mark.asyncio
async def test_extract_knowledge_bucket_holds_latest_episode(controller: MemoryController):
    await controller.episodic.store_conversation("user", "old crash report")
    await controller.episodic.store_conversation("user", "new crash report")

    counts = await controller.extract_knowledge()
    assert counts == {CODE_PATTERNS: 0, TROUBLESHOOTING: 2}

    node = await controller.semantic.get_knowledge(EXTRACTED_CATEGORY, TROUBLESHOOTING)
    assert node.content == "new crash report"


@pytest.mark.asyncio
async def test_extract_knowledge_is_idempotent(controller: MemoryController, adapter):
    await controller.episodic.store_conversation("user", "python error in my script")
    await controller.extract_knowledge()
    await controller.extract_knowledge()
    assert (await adapter.counts())["semantic_knowledge"] == 2


@pytest.mark.asyncio
async def test_consolidate_promotes_important_items(controller: MemoryController):
    await controller.short_term.add_working_context("goal", "ship v1", importance=5)
    await controller.short_term.add_working_context("aside", "lunch at noon", importance=2)

    result = await controller.consolidate_memory()
    assert result == {"knowledge_promoted": 1, "summary_stored": False}

    node = await controller.semantic.get_knowledge("working_context", "goal")
    assert node.content == "ship v1"
    assert node.source == "short_term_memory"
    assert node.metadata["importance"] == "high"
    assert await controller.semantic.get_knowledge("working_context", "aside") is None


@pytest.mark.asyncio
async def test_consolidate_stores_session_summary(controller: MemoryController):
    session_id = await controller.short_term.start_session()
    await controller.episodic.store_conversation("user", "Tell me about caching")
    await controller.episodic.store_conversation("assistant", "Caching stores results")

    result = await controller.consolidate_memory()
    assert result["summary_stored"] is True

    summary = await controller.episodic.get_session_summary(session_id)
    assert summary.message_count == 2

    system_turns = await controller.episodic.get_conversations(session_id=session_id, role="system")
    assert len(system_turns) == 1
    assert system_turns[0].content == summary.summary
    assert system_turns[0].metadata["type"] == "session_summary"


@pytest.mark.asyncio
async def test_repeated_consolidation_ignores_earlier_summaries(controller: MemoryController):
    session_id = await controller.short_term.start_session()
    await controller.episodic.store_conversation("user", "Tell me about caching")
    await controller.episodic.store_conversation("assistant", "Caching stores results")

    await controller.consolidate_memory()
    first = await controller.episodic.get_session_summary(session_id)
    await controller.consolidate_memory()
    second = await controller.episodic.get_session_summary(session_id)

    assert second.message_count == 2
    assert "system" not in second.summary
    assert second.summary.splitlines()[2] == first.summary.splitlines()[2]


@pytest.mark.asyncio
async def test_enrich_context(controller: MemoryController):
    node_id = await controller.semantic.store_knowledge(
        "lang", "python decorators", "wrap functions"
    )
    await controller.short_term.add_working_context("goal", "learn python", importance=4)
    await controller.short_term.start_session()
    await controller.episodic.store_conversation("user", "earlier question")

    query = "explain python decorators python"
    context = await controller.enrich_context(query)

    # One search per keyword occurrence, hits concatenated
    assert [n.id for n in context.relevant_knowledge] == [node_id, node_id, node_id]
    assert [i.details for i in context.working_context] == ["learn python"]
    assert [e.content for e in context.recent_conversations] == ["earlier question"]

    cached = await controller.short_term.get_context(ENRICHED_CONTEXT_KEY)
    assert cached["query"] == query
    assert cached["relevant_knowledge"][0]["id"] == node_id


@pytest.mark.asyncio
async def test_process_interaction_records_turns(controller: MemoryController):
    response = await controller.process_interaction("hello memory")

    assert response.startswith("Processed: hello memory")
    assert controller.state is ControllerState.IDLE
    assert controller.interaction_count == 1

    turns = await controller.short_term.get_conversation_context()
    assert [t.role for t in turns] == ["user", "assistant"]

    episodes = await controller.episodic.get_recent_conversations()
    assert [e.type for e in episodes] == ["assistant", "user"]
    assert await controller.short_term.get_context("current_query") == "hello memory"
    assert await controller.short_term.get_context("last_response") == response


@pytest.mark.asyncio
async def test_process_interaction_consolidates_periodically(controller: MemoryController):
    await controller.short_term.add_working_context("goal", "ship v1", importance=5)

    for i in range(4):
        await controller.process_interaction(f"message {i}")
    assert await controller.semantic.get_knowledge("working_context", "goal") is None

    await controller.process_interaction("there is a bug in the function")
    assert controller.interaction_count == 5
    assert controller.state is ControllerState.IDLE

    node = await controller.semantic.get_knowledge("working_context", "goal")
    assert node.metadata["importance"] == "high"
    assert await controller.semantic.get_knowledge(EXTRACTED_CATEGORY, TROUBLESHOOTING)


@pytest.mark.asyncio
async def test_process_interaction_fallback(controller: MemoryController, monkeypatch):
    async def broken(query):
        raise RuntimeError("enrichment exploded")

    monkeypatch.setattr(controller, "enrich_context", broken)

    response = await controller.process_interaction("anything")
    assert response == FALLBACK_RESPONSE
    assert controller.state is ControllerState.IDLE


@pytest.mark.asyncio
async def test_process_interaction_callback(controller: MemoryController):
    received = []

    async def callback(response: str) -> None:
        received.append(response)

    response = await controller.process_interaction("ping", callback=callback)
    assert received == [response]


@pytest.mark.asyncio
async def test_callback_failure_does_not_escape(controller: MemoryController):
    async def callback(response: str) -> None:
        raise ValueError("listener broke")

    response = await controller.process_interaction("ping", callback=callback)
    assert response.startswith("Processed: ping")


@pytest.mark.asyncio
async def test_create_memory_in_memory_backend(tmp_path):
    settings = Settings(data_dir=tmp_path, storage_backend="memory", _env_file=None)
    memory = await create_memory(settings)
    try:
        assert isinstance(memory._adapter, InMemoryAdapter)
        assert (await memory.process_interaction("hi")).startswith("Processed: hi")
    finally:
        await memory.close()
    assert not settings.db_path.exists()


@pytest.mark.asyncio
async def test_create_memory_sqlite_backend(tmp_path):
    settings = Settings(data_dir=tmp_path / "nested", _env_file=None)
    memory = await create_memory(settings)
    try:
        assert isinstance(memory._adapter, FallbackAdapter)
        assert not memory._adapter.degraded
        await memory.process_interaction("hi")
    finally:
        await memory.close()
    assert settings.db_path.exists()
