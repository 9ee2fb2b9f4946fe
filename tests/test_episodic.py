"""Tests for the episodic memory tier."""

from datetime import datetime, timedelta

import pytest

from recall.memory.base import Episode, MemoryType
from recall.memory.episodic import EpisodicStore


def _turn(episode_id: int, role: str, content: str, timestamp: datetime) -> Episode:
    return Episode(id=episode_id, session_id="s1", type=role, content=content, timestamp=timestamp)


@pytest.mark.asyncio
async def test_store_uses_active_session(episodic: EpisodicStore, short_term):
    session_id = await short_term.start_session("session_abc")
    episode_id = await episodic.store_conversation("user", "hello there")

    episode = await episodic.get_episode(episode_id)
    assert episode.session_id == session_id
    assert episode.type == "user"
    assert episode.role == "user"


@pytest.mark.asyncio
async def test_store_without_session_starts_one(episodic: EpisodicStore, short_term):
    """A missing session id is never stored as null."""
    episode_id = await episodic.store_conversation("user", "first message")

    session_id = await short_term.get_session_id()
    assert session_id is not None
    assert (await episodic.get_episode(episode_id)).session_id == session_id


@pytest.mark.asyncio
async def test_get_conversations_filters(episodic: EpisodicStore):
    base = datetime(2026, 3, 1, 10, 0, 0)
    await episodic.store_conversation("user", "q1", session_id="a", timestamp=base)
    await episodic.store_conversation(
        "assistant", "a1", session_id="a", timestamp=base + timedelta(seconds=1)
    )
    await episodic.store_conversation(
        "user", "q2", session_id="b", timestamp=base + timedelta(seconds=2)
    )
    await episodic.store_episode(
        "deployed", type="event", session_id="a", timestamp=base + timedelta(seconds=3)
    )

    session_a = await episodic.get_conversations(session_id="a")
    assert [e.content for e in session_a] == ["a1", "q1"]

    users = await episodic.get_conversations(role="user")
    assert [e.content for e in users] == ["q2", "q1"]

    recent = await episodic.get_recent_conversations(count=1)
    assert [e.content for e in recent] == ["q2"]

    everything = await episodic.get_recent_episodes()
    assert everything[0].content == "deployed"
    assert len(everything) == 4


@pytest.mark.asyncio
async def test_summarize_conversations_exact(episodic: EpisodicStore):
    base = datetime(2026, 1, 1, 9, 0, 0)
    turns = [
        _turn(1, "user", "Python decorators are great", base),
        _turn(2, "assistant", "Decorators wrap python functions", base + timedelta(minutes=1)),
        _turn(3, "user", "Show python examples", base + timedelta(minutes=2)),
    ]

    expected = (
        "Conversation with 3 messages (assistant: 1, user: 2).\n"
        "Time span: 2026-01-01T09:00:00 to 2026-01-01T09:02:00.\n"
        "Main topics: python, decorators, great, wrap, functions."
    )
    assert episodic.summarize_conversations(turns) == expected
    # Input order doesn't matter
    assert episodic.summarize_conversations(list(reversed(turns))) == expected


@pytest.mark.asyncio
async def test_summarize_empty(episodic: EpisodicStore):
    assert episodic.summarize_conversations([]) == "No conversations to summarize."


@pytest.mark.asyncio
async def test_latest_summary_wins(episodic: EpisodicStore):
    base = datetime(2026, 1, 1)
    await episodic.store_summary("s1", "second", base, base + timedelta(hours=2), 4)
    await episodic.store_summary("s1", "first", base, base + timedelta(hours=1), 2)

    summary = await episodic.get_session_summary("s1")
    assert summary.summary == "second"
    assert summary.message_count == 4


@pytest.mark.asyncio
async def test_summarize_current_session(episodic: EpisodicStore, short_term):
    assert await episodic.summarize_current_session() is None

    session_id = await short_term.start_session()
    assert await episodic.summarize_current_session() is None

    await episodic.store_conversation("user", "How do python generators work")
    await episodic.store_conversation("assistant", "Generators yield values lazily")

    summary = await episodic.summarize_current_session()
    assert summary is not None
    assert summary.session_id == session_id
    assert summary.message_count == 2
    assert "Main topics: generators" in summary.summary

    stored = await episodic.get_session_summary(session_id)
    assert stored.id == summary.id
    assert stored.summary == summary.summary


@pytest.mark.asyncio
async def test_search_episodes_logs_query(episodic: EpisodicStore, adapter):
    await episodic.store_conversation("user", "the cache is stale", session_id="s1")
    await episodic.store_conversation("user", "unrelated", session_id="s1")
    episode_id = await episodic.store_conversation("user", "Cache warmed", session_id="s1")
    assert await episodic.update_importance(episode_id, 5) is True

    results = await episodic.search_episodes("cache")
    assert [e.content for e in results] == ["Cache warmed", "the cache is stale"]

    logged = await adapter.recent_queries()
    assert logged[0].memory_type == MemoryType.EPISODIC
    assert logged[0].query == "cache"
    assert logged[0].result_count == 2
