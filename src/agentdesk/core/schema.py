"""
Schema definitions for agents, tools, knowledge and conversation turns.

These data models serve as the contract between the persistence layer, the per-turn orchestration
pipeline and the language model.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


def default_instructions(name: str, personality: str | None = None) -> str:
    """Render the system instructions stored for an agent."""
    if personality:
        return (
            f'You are an AI assistant named "{name}". Your personality: {personality}. '
            "Be helpful, friendly, and stay in character."
        )
    return f'You are an AI assistant named "{name}". Be helpful and friendly.'


# ---------------------------------------------------------------------------
# Tool configuration
# ---------------------------------------------------------------------------
class ApiKind(str, Enum):
    """Closed set of protocols an API tool may speak."""

    REST = "rest"
    GRAPHQL = "graphql"
    OPENAPI = "openapi"


class ToolServerConfig(BaseModel):
    """An MCP server configured on an agent."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    url: str
    description: str = ""
    instructions: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    api_key: Optional[str] = Field(None, alias="apiKey")


class _ApiToolBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    url: str
    method: str = "POST"
    description: str = ""
    instructions: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    api_key: Optional[str] = Field(None, alias="apiKey")

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return (value or "POST").upper()


class RestApiTool(_ApiToolBase):
    """Plain REST endpoint with an unknown body shape."""

    api_type: Literal["rest"] = "rest"


class GraphQLApiTool(_ApiToolBase):
    """GraphQL endpoint; queries are synthesised from ``schema_text``."""

    api_type: Literal["graphql"] = "graphql"
    schema_text: Optional[str] = Field(None, alias="schema")


class OpenApiTool(_ApiToolBase):
    """OpenAPI-described endpoint; JSON bodies are synthesised from ``schema_text``."""

    api_type: Literal["openapi"] = "openapi"
    schema_text: Optional[str] = Field(None, alias="schema")


ApiToolConfig = Annotated[
    Union[RestApiTool, GraphQLApiTool, OpenApiTool], Field(discriminator="api_type")
]


def normalize_api_tool(raw: Any) -> Any:
    """Resolve the loosely typed ``apiType`` of a stored tool into the ``api_type`` tag."""
    if not isinstance(raw, dict):
        return raw
    data = dict(raw)
    kind = str(data.pop("apiType", None) or data.get("api_type") or ApiKind.REST.value).lower()
    if kind not in {k.value for k in ApiKind}:
        kind = ApiKind.REST.value
    data["api_type"] = kind
    if kind == ApiKind.REST.value:
        data.pop("schema", None)
        data.pop("schema_text", None)
    return data


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------
Visibility = Literal["private", "friends", "public"]


class Agent(BaseModel):
    """A user-owned conversational agent."""

    id: str
    owner_id: str
    name: str = Field(..., max_length=50)
    emoji: str = "🤖"
    personality: Optional[str] = None
    system_instructions: Optional[str] = None
    model: Optional[str] = None
    visibility: Visibility = "private"

    # Feature toggles
    use_knowledge_base: bool = True
    mcp_enabled: bool = True
    api_enabled: bool = True
    web_search_enabled: bool = True

    mcp_servers: List[ToolServerConfig] = Field(default_factory=list)
    api_tools: List[ApiToolConfig] = Field(default_factory=list)

    message_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("api_tools", mode="before")
    @classmethod
    def _resolve_api_kinds(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [normalize_api_tool(item) for item in value]
        return value

    def can_access(self, user_id: str) -> bool:
        """Owners always have access; others only when the agent is not private."""
        return self.owner_id == user_id or self.visibility != "private"

    def personality_text(self) -> str:
        """The personality/system text handed to the model."""
        return self.system_instructions or f"You are a helpful AI assistant named {self.name}."


class AgentUpdate(BaseModel):
    """Partial update applied to an :class:`Agent`."""

    name: Optional[str] = Field(None, max_length=50)
    personality: Optional[str] = None
    emoji: Optional[str] = None
    visibility: Optional[Visibility] = None
    use_knowledge_base: Optional[bool] = None
    mcp_enabled: Optional[bool] = None
    api_enabled: Optional[bool] = None
    web_search_enabled: Optional[bool] = None
    mcp_servers: Optional[List[ToolServerConfig]] = None
    api_tools: Optional[List[ApiToolConfig]] = None

    @field_validator("api_tools", mode="before")
    @classmethod
    def _resolve_api_kinds(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [normalize_api_tool(item) for item in value]
        return value


# ---------------------------------------------------------------------------
# Discovered tools
# ---------------------------------------------------------------------------
class ToolParameter(BaseModel):
    """One named, typed parameter of a discovered tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    description: str = ""
    required: bool = False


class ToolDescriptor(BaseModel):
    """The discovered shape of one callable tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "ToolDescriptor":
        """Build a descriptor from a ``tools/list`` entry (``{name, description?, inputSchema?}``)."""
        schema = raw.get("inputSchema")
        schema = schema if isinstance(schema, dict) else {}
        required = schema.get("required")
        required = {str(r) for r in required} if isinstance(required, list) else set()
        properties = schema.get("properties")
        properties = properties if isinstance(properties, dict) else {}
        params = []
        for pname, pschema in properties.items():
            pschema = pschema if isinstance(pschema, dict) else {}
            params.append(
                ToolParameter(
                    name=pname,
                    type=str(pschema.get("type", "string")),
                    description=str(pschema.get("description") or ""),
                    required=pname in required,
                )
            )
        return cls(
            name=str(raw["name"]),
            description=str(raw.get("description") or ""),
            parameters=tuple(params),
        )


class ToolSelection(BaseModel):
    """The model's choice of the next tool to call: ``{"toolName": ..., "args": {...}}``."""

    model_config = ConfigDict(populate_by_name=True)

    tool_name: Optional[str] = Field(None, alias="toolName")
    args: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tool_name", mode="before")
    @classmethod
    def _null_name(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        return None if text.lower() in {"", "null", "none"} else text

    @field_validator("args", mode="before")
    @classmethod
    def _null_args(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class ToolCallResult(BaseModel):
    """Text produced by one tool call, classified per call."""

    tool_name: str
    text: str
    intermediate: bool = False


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------
class KnowledgeChunk(BaseModel):
    """One similarity-search hit scoped to an agent."""

    content: str
    similarity: float


SourceStatus = Literal["pending", "processing", "indexed", "failed"]


class KnowledgeSource(BaseModel):
    """A URL attached to an agent's knowledge base."""

    id: str
    agent_id: str
    url: str
    title: str
    content_type: str = "webpage"
    status: SourceStatus = "pending"
    error_message: Optional[str] = None
    chunk_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    indexed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
Role = Literal["user", "model"]


class ConversationTurn(BaseModel):
    """A single persisted message between a user and an agent."""

    agent_id: str
    user_id: str
    role: Role
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class Part(BaseModel):
    """Text part of a model content entry."""

    text: str


class Content(BaseModel):
    """One ``{role, parts}`` entry handed to the language model."""

    role: Role
    parts: List[Part]

    @classmethod
    def text(cls, role: Role, text: str) -> "Content":
        """Shortcut for a single-part entry."""
        return cls(role=role, parts=[Part(text=text)])


class GenerationConfig(BaseModel):
    """Options recognised by every model backend."""

    system_instruction: Optional[str] = None
    model: Optional[str] = None  # backend default when unset
    max_output_tokens: int = 2048
    temperature: Optional[float] = None
    web_search: bool = False
