"""Shared fakes for the test-suite."""

from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

import pytest

from agentdesk.agent.model_interface import (
    BaseModelClient,
    ModelCallError,
)
from agentdesk.core.schema import (
    Content,
    GenerationConfig,
    KnowledgeChunk,
)
from agentdesk.memory.memory_store import (
    AgentStore,
    ConversationStore,
    KnowledgeSourceStore,
)


class ScriptedModel(BaseModelClient):
    """
    Language model stub.

    Auxiliary calls (no system instruction) pop scripted answers in order; the final reply call
    returns *reply*.  Every call is recorded for assertions.
    """

    def __init__(self, answers: Sequence[str] = (), reply: str = "Hello!", fail: bool = False):
        self.answers: List[str] = list(answers)
        self.reply = reply
        self.fail = fail
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, contents: Sequence[Content], config: GenerationConfig) -> str:
        self.calls.append({"contents": list(contents), "config": config})
        if self.fail:
            raise ModelCallError("model unavailable")
        if config.system_instruction is None:
            return self.answers.pop(0) if self.answers else ""
        return self.reply

    @property
    def prompts(self) -> List[str]:
        """Text of every auxiliary prompt sent so far."""
        return [
            c["contents"][-1].parts[0].text
            for c in self.calls
            if c["config"].system_instruction is None
        ]

    @property
    def final_config(self) -> GenerationConfig:
        return [c["config"] for c in self.calls if c["config"].system_instruction is not None][-1]


class FakeIndex:
    """In-memory stand-in for the vector index."""

    def __init__(self, chunks: Sequence[KnowledgeChunk] = (), fail_embed: bool = False):
        self.chunks = list(chunks)
        self.fail_embed = fail_embed
        self.added: Dict[str, List[str]] = {}
        self.queries: List[Dict[str, Any]] = []

    def embed(self, text: str) -> List[float]:
        if self.fail_embed:
            raise RuntimeError("embedding service down")
        return [0.1, 0.2, 0.3]

    def match_chunks(self, agent_id, embedding, match_count, match_threshold):
        self.queries.append(
            {"agent_id": agent_id, "count": match_count, "threshold": match_threshold}
        )
        return [c for c in self.chunks if c.similarity >= match_threshold][:match_count]

    def add_chunks(self, agent_id, source_id, chunks):
        self.added[source_id] = list(chunks)
        return len(chunks)


@pytest.fixture
def agent_store(tmp_path) -> AgentStore:
    return AgentStore(tmp_path / "agents.json")


@pytest.fixture
def conversation_store(tmp_path) -> ConversationStore:
    return ConversationStore(tmp_path / "conversations.jsonl")


@pytest.fixture
def source_store(tmp_path) -> KnowledgeSourceStore:
    return KnowledgeSourceStore(tmp_path / "sources.json")
