"""
Pydantic models for agentdesk API requests and responses.
This module defines the request and response schemas used by the agentdesk API.
"""

from typing import (
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from agentdesk.core.schema import (
    AgentUpdate,
    ConversationTurn,
    Role,
    Visibility,
)


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------
class AgentCreateRequest(BaseModel):
    """Create a new agent for *user_id*."""

    user_id: str = Field(..., description="Owner of the new agent")
    name: str = Field(..., min_length=1, max_length=50)
    personality: Optional[str] = None
    emoji: Optional[str] = None
    visibility: Visibility = "private"


class AgentUpdateRequest(AgentUpdate):
    """Partial update; only the owner may apply it."""

    user_id: str


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
class ChatRequest(BaseModel):
    """Incoming user message."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field("", description="User message for the agent")
    user_id: str = Field("", alias="userId", description="Identity of the sender")


class ChatResponse(BaseModel):
    """The agent's reply."""

    message: str
    agent_name: str
    agent_emoji: str


class HistoryMessage(BaseModel):
    """One stored message of a conversation."""

    role: Role
    content: str
    created_at: str

    @classmethod
    def from_turn(cls, turn: ConversationTurn) -> "HistoryMessage":
        return cls(role=turn.role, content=turn.content, created_at=turn.created_at.isoformat())


class HistoryResponse(BaseModel):
    messages: List[HistoryMessage]


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------
class KnowledgeSourceRequest(BaseModel):
    """Attach a URL to an agent's knowledge base."""

    user_id: str
    url: str = Field(..., min_length=1)
    title: Optional[str] = None
    content_type: str = "webpage"


# ---------------------------------------------------------------------------
# API detection
# ---------------------------------------------------------------------------
class DetectApiRequest(BaseModel):
    """Probe *url* to find out what kind of API it serves."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = ""
    api_key: Optional[str] = Field(None, alias="apiKey")
    headers: Dict[str, str] = Field(default_factory=dict)
