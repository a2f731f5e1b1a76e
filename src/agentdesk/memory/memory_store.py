"""
File-backed persistence for agents, knowledge sources and conversation turns.

- agents and knowledge sources: one JSON document each, rewritten atomically
- conversation turns: an append-only JSON-lines log
"""

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from agentdesk.config import settings
from agentdesk.core.schema import (
    Agent,
    AgentUpdate,
    ConversationTurn,
    KnowledgeSource,
    Role,
    SourceStatus,
    Visibility,
    default_instructions,
    utcnow,
)

logger = logging.getLogger(__name__)


class AgentLimitError(ValueError):
    """Raised when an owner already has the maximum number of agents."""


class DuplicateError(ValueError):
    """Raised when a name/URL must be unique and is already taken."""


def data_path(name: str) -> Path:
    """Path of *name* inside the configured data directory."""
    return Path(settings.DATA_DIR) / name


class _JsonDocumentStore:
    """A ``{id: record}`` mapping persisted as one JSON file."""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    def init(self) -> None:
        """Create the backing file if it doesn't exist."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._path.write_text("{}", encoding="utf-8")

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _dump(self, records: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self._path)


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------
class AgentStore(_JsonDocumentStore):
    """Agent configurations keyed by id."""

    def __init__(self, path: Path | None = None, max_per_owner: int | None = None):
        super().__init__(path or data_path("agents.json"))
        self._max_per_owner = (
            max_per_owner if max_per_owner is not None else settings.MAX_AGENTS_PER_USER
        )

    def get(self, agent_id: str) -> Optional[Agent]:
        """Return the agent or ``None``."""
        raw = self._load().get(agent_id)
        return Agent.model_validate(raw) if raw else None

    def list_for_owner(self, owner_id: str) -> List[Agent]:
        """Agents owned by *owner_id*, newest first."""
        agents = [
            Agent.model_validate(raw)
            for raw in self._load().values()
            if raw.get("owner_id") == owner_id
        ]
        return sorted(agents, key=lambda a: a.created_at, reverse=True)

    def save(self, agent: Agent) -> Agent:
        """Insert or replace *agent* as-is."""
        with self._lock:
            records = self._load()
            records[agent.id] = agent.model_dump(mode="json")
            self._dump(records)
        return agent

    def create(
        self,
        owner_id: str,
        name: str,
        personality: str | None = None,
        emoji: str | None = None,
        visibility: Visibility = "private",
    ) -> Agent:
        """Create an agent; enforces the per-owner limit and unique names."""
        name = name.strip()
        personality = personality.strip() if personality else None
        with self._lock:
            records = self._load()
            owned = [r for r in records.values() if r.get("owner_id") == owner_id]
            if len(owned) >= self._max_per_owner:
                raise AgentLimitError(
                    f"Maximum of {self._max_per_owner} agents allowed per user"
                )
            if any(r.get("name") == name for r in owned):
                raise DuplicateError("You already have an agent with this name")

            agent = Agent(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                name=name,
                personality=personality,
                system_instructions=default_instructions(name, personality),
                emoji=emoji or "🤖",
                visibility=visibility,
            )
            records[agent.id] = agent.model_dump(mode="json")
            self._dump(records)
        logger.info("Created agent %s for %s", agent.id, owner_id)
        return agent

    def update(self, agent_id: str, changes: AgentUpdate) -> Agent:
        """Apply a partial update; regenerates instructions when the personality changes."""
        with self._lock:
            records = self._load()
            if agent_id not in records:
                raise KeyError(agent_id)
            agent = Agent.model_validate(records[agent_id])
            updates = changes.model_dump(exclude_unset=True)
            if "name" in updates and updates["name"] is not None:
                updates["name"] = updates["name"].strip()
            if "personality" in updates:
                personality = (updates["personality"] or "").strip() or None
                updates["personality"] = personality
                name = updates.get("name") or agent.name
                updates["system_instructions"] = default_instructions(name, personality)
            updates["updated_at"] = utcnow()

            merged = agent.model_dump()
            merged.update(updates)
            agent = Agent.model_validate(merged)
            records[agent_id] = agent.model_dump(mode="json")
            self._dump(records)
        return agent

    def delete(self, agent_id: str) -> bool:
        """Delete an agent; returns whether it existed."""
        with self._lock:
            records = self._load()
            existed = records.pop(agent_id, None) is not None
            if existed:
                self._dump(records)
        return existed

    def increment_message_count(self, agent_id: str) -> None:
        """Bump the agent's message counter."""
        with self._lock:
            records = self._load()
            if agent_id in records:
                records[agent_id]["message_count"] = records[agent_id].get("message_count", 0) + 1
                self._dump(records)


# ---------------------------------------------------------------------------
# Knowledge sources
# ---------------------------------------------------------------------------
class KnowledgeSourceStore(_JsonDocumentStore):
    """URLs attached to agents' knowledge bases."""

    def __init__(self, path: Path | None = None):
        super().__init__(path or data_path("knowledge_sources.json"))

    def add(
        self, agent_id: str, url: str, title: str, content_type: str = "webpage"
    ) -> KnowledgeSource:
        """Register a pending source; URLs are unique per agent."""
        with self._lock:
            records = self._load()
            if any(r["agent_id"] == agent_id and r["url"] == url for r in records.values()):
                raise DuplicateError(f"{url} is already in this agent's knowledge base")
            source = KnowledgeSource(
                id=str(uuid.uuid4()),
                agent_id=agent_id,
                url=url,
                title=title,
                content_type=content_type,
            )
            records[source.id] = source.model_dump(mode="json")
            self._dump(records)
        return source

    def get(self, source_id: str) -> Optional[KnowledgeSource]:
        raw = self._load().get(source_id)
        return KnowledgeSource.model_validate(raw) if raw else None

    def list(
        self, agent_id: str, status: SourceStatus | None = None, limit: int | None = None
    ) -> List[KnowledgeSource]:
        """Sources of *agent_id*, oldest first, optionally filtered by status."""
        sources = [
            KnowledgeSource.model_validate(raw)
            for raw in self._load().values()
            if raw["agent_id"] == agent_id and (status is None or raw.get("status") == status)
        ]
        sources.sort(key=lambda s: s.created_at)
        return sources[:limit] if limit is not None else sources

    def set_status(
        self,
        source_id: str,
        status: SourceStatus,
        chunk_count: int | None = None,
        error_message: str | None = None,
    ) -> Optional[KnowledgeSource]:
        """Record indexing progress for a source."""
        with self._lock:
            records = self._load()
            raw = records.get(source_id)
            if raw is None:
                return None
            raw["status"] = status
            raw["error_message"] = error_message
            if chunk_count is not None:
                raw["chunk_count"] = chunk_count
            if status == "indexed":
                raw["indexed_at"] = utcnow().isoformat()
            records[source_id] = raw
            self._dump(records)
        return KnowledgeSource.model_validate(raw)


# ---------------------------------------------------------------------------
# Conversation log
# ---------------------------------------------------------------------------
class ConversationStore:
    """Append-only JSON-lines log of conversation turns."""

    def __init__(self, path: Path | None = None):
        self._path = Path(path or data_path("conversations.jsonl"))
        self._lock = threading.Lock()

    def init(self) -> None:
        """Create the log file if it doesn't exist."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._path.touch()

    def _read(self) -> List[ConversationTurn]:
        if not self._path.exists():
            return []
        turns = []
        with self._path.open("r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    turns.append(ConversationTurn.model_validate_json(line))
        return turns

    def append(self, agent_id: str, user_id: str, role: Role, content: str) -> ConversationTurn:
        """Persist one message."""
        turn = ConversationTurn(agent_id=agent_id, user_id=user_id, role=role, content=content)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(turn.model_dump_json() + "\n")
        return turn

    def recent(self, agent_id: str, user_id: str, limit: int) -> List[ConversationTurn]:
        """The last *limit* turns of the (agent, user) conversation, oldest first."""
        turns = [t for t in self._read() if t.agent_id == agent_id and t.user_id == user_id]
        return turns[-limit:] if limit > 0 else []

    def history(self, agent_id: str, user_id: str, limit: int = 50) -> List[ConversationTurn]:
        """Conversation for display, ascending by time."""
        return sorted(self.recent(agent_id, user_id, limit), key=lambda t: t.created_at)

    def clear(self, agent_id: str, user_id: str) -> int:
        """Delete the (agent, user) conversation; returns how many turns were removed."""
        with self._lock:
            turns = self._read()
            kept = [t for t in turns if not (t.agent_id == agent_id and t.user_id == user_id)]
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                for turn in kept:
                    f.write(turn.model_dump_json() + "\n")
            tmp.replace(self._path)
        return len(turns) - len(kept)
