"""Tests for the file-backed agent, knowledge-source and conversation stores."""

import pytest

from agentdesk.core.schema import AgentUpdate
from agentdesk.memory.memory_store import (
    AgentLimitError,
    AgentStore,
    DuplicateError,
)


def test_create_generates_instructions(agent_store) -> None:
    with_personality = agent_store.create("alice", "Ada", personality="  witty  ")
    plain = agent_store.create("alice", "Bob")

    assert with_personality.system_instructions == (
        'You are an AI assistant named "Ada". Your personality: witty. '
        "Be helpful, friendly, and stay in character."
    )
    assert plain.system_instructions == 'You are an AI assistant named "Bob". Be helpful and friendly.'
    assert agent_store.get(plain.id) == plain


def test_agent_limit_and_unique_names(tmp_path) -> None:
    store = AgentStore(tmp_path / "agents.json", max_per_owner=2)
    store.create("alice", "One")
    with pytest.raises(DuplicateError):
        store.create("alice", "One")
    store.create("alice", "Two")
    with pytest.raises(AgentLimitError):
        store.create("alice", "Three")
    # other owners are unaffected
    store.create("bob", "One")
    assert [a.name for a in store.list_for_owner("bob")] == ["One"]


def test_update_regenerates_instructions_on_personality_change(agent_store) -> None:
    agent = agent_store.create("alice", "Ada")

    updated = agent_store.update(agent.id, AgentUpdate(personality="grumpy", emoji="🦉"))

    assert updated.emoji == "🦉"
    assert "Your personality: grumpy." in updated.system_instructions
    assert updated.updated_at >= agent.updated_at

    renamed = agent_store.update(agent.id, AgentUpdate(name="Grace"))
    assert renamed.name == "Grace"
    assert renamed.personality == "grumpy"

    with pytest.raises(KeyError):
        agent_store.update("missing", AgentUpdate(name="x"))


def test_delete_and_message_count(agent_store) -> None:
    agent = agent_store.create("alice", "Ada")
    agent_store.increment_message_count(agent.id)
    agent_store.increment_message_count(agent.id)
    assert agent_store.get(agent.id).message_count == 2

    assert agent_store.delete(agent.id)
    assert agent_store.get(agent.id) is None
    assert not agent_store.delete(agent.id)


def test_knowledge_source_urls_are_unique_per_agent(source_store) -> None:
    first = source_store.add("a1", "https://docs.example.com", "Docs")
    source_store.add("a2", "https://docs.example.com", "Docs")
    with pytest.raises(DuplicateError):
        source_store.add("a1", "https://docs.example.com", "Docs again")

    assert first.status == "pending"
    source_store.set_status(first.id, "indexed", chunk_count=4)
    stored = source_store.get(first.id)
    assert (stored.status, stored.chunk_count) == ("indexed", 4)
    assert stored.indexed_at is not None
    assert source_store.list("a1", status="pending") == []


def test_conversation_recent_is_oldest_first_and_scoped(conversation_store) -> None:
    conversation_store.init()
    for i in range(12):
        conversation_store.append("a1", "alice", "user" if i % 2 == 0 else "model", f"m{i}")
    conversation_store.append("a1", "bob", "user", "other user")
    conversation_store.append("a2", "alice", "user", "other agent")

    recent = conversation_store.recent("a1", "alice", 10)
    assert [t.content for t in recent] == [f"m{i}" for i in range(2, 12)]
    assert [t.content for t in conversation_store.history("a1", "alice")] == [
        f"m{i}" for i in range(12)
    ]

    assert conversation_store.clear("a1", "alice") == 12
    assert conversation_store.recent("a1", "alice", 10) == []
    assert [t.content for t in conversation_store.recent("a1", "bob", 10)] == ["other user"]
