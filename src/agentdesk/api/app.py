"""
Core API backend for agentdesk.

It exposes the following endpoints:
- **GET /health**                                   - liveness probe for health checks.
- **POST /agents**, **GET /agents?user_id=**        - create / list a user's agents.
- **GET|PATCH|DELETE /agents/{id}**                 - read, update or delete one agent.
- **POST /agents/{id}/chat**                        - one conversational turn: {"message", "userId"}
- **GET|DELETE /agents/{id}/chat?user_id=**         - read or clear the conversation.
- **POST|GET /agents/{id}/knowledge**               - manage knowledge sources.
- **POST /agents/{id}/knowledge/{source_id}/index** - index a pending source.
- **POST /agents/detect-api**                       - guess the kind of API behind a URL.
"""

import logging
from functools import lru_cache
from typing import (
    Dict,
    List,
)

from fastapi import (
    Depends,
    FastAPI,
    Request,
)
from fastapi.responses import JSONResponse

from agentdesk.agent.api_executor import ApiToolExecutor
from agentdesk.agent.model_interface import (
    BaseModelClient,
    ModelCallError,
    ModelNotConfiguredError,
    load_model,
)
from agentdesk.agent.orchestrator import (
    AccessDeniedError,
    AgentNotFoundError,
    NotConfiguredError,
    TurnOrchestrator,
    TurnValidationError,
    load_agent_for,
    normalize_user,
)
from agentdesk.agent.tool_loop import ToolLoopController
from agentdesk.api.models import (
    AgentCreateRequest,
    AgentUpdateRequest,
    ChatRequest,
    ChatResponse,
    DetectApiRequest,
    HistoryMessage,
    HistoryResponse,
    KnowledgeSourceRequest,
)
from agentdesk.common import (
    AnsiColors,
    colored_print,
)
from agentdesk.config import settings
from agentdesk.core.schema import (
    Agent,
    AgentUpdate,
    KnowledgeSource,
)
from agentdesk.memory.knowledge_index import KnowledgeIndex
from agentdesk.memory.knowledge_retriever import (
    KnowledgeIndexer,
    KnowledgeRetriever,
)
from agentdesk.memory.memory_store import (
    AgentLimitError,
    AgentStore,
    ConversationStore,
    DuplicateError,
    KnowledgeSourceStore,
)
from agentdesk.tools.api_detection import (
    DetectionResult,
    detect_api,
)
from agentdesk.tools.mcp_client import McpClient
from agentdesk.tools.schema_cache import ToolSchemaCache

logger = logging.getLogger(__name__)

app = FastAPI(
    title="agentdesk API", version="0.1.0", description="Per-turn conversational agent API"
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
_STATUS_FOR_ERROR = {
    NotConfiguredError: 500,
    ModelNotConfiguredError: 500,
    TurnValidationError: 400,
    AgentLimitError: 400,
    DuplicateError: 400,
    AgentNotFoundError: 404,
    AccessDeniedError: 403,
    ModelCallError: 502,
}


async def _error_response(request: Request, exc: Exception) -> JSONResponse:
    status = next(
        (code for cls, code in _STATUS_FOR_ERROR.items() if isinstance(exc, cls)), 500
    )
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


for _error_cls in _STATUS_FOR_ERROR:
    app.add_exception_handler(_error_cls, _error_response)


# ---------------------------------------------------------------------------
# Dependencies (overridable in tests via ``app.dependency_overrides``)
# ---------------------------------------------------------------------------
@lru_cache
def get_agent_store() -> AgentStore:
    return AgentStore()


@lru_cache
def get_conversation_store() -> ConversationStore:
    return ConversationStore()


@lru_cache
def get_source_store() -> KnowledgeSourceStore:
    return KnowledgeSourceStore()


@lru_cache
def get_knowledge_index() -> KnowledgeIndex:
    return KnowledgeIndex()


@lru_cache
def get_schema_cache() -> ToolSchemaCache:
    """Process-wide tool schema cache shared by every turn."""
    return ToolSchemaCache(McpClient().list_tools)


@lru_cache
def get_model() -> BaseModelClient | None:
    """The configured model backend, or ``None`` when credentials are missing."""
    try:
        return load_model()
    except ModelNotConfiguredError as exc:
        logger.error("Language model unavailable: %s", exc)
        return None


def get_retriever(
    index: KnowledgeIndex = Depends(get_knowledge_index),
    sources: KnowledgeSourceStore = Depends(get_source_store),
) -> KnowledgeRetriever:
    return KnowledgeRetriever(index, sources)


def get_indexer(
    index: KnowledgeIndex = Depends(get_knowledge_index),
    sources: KnowledgeSourceStore = Depends(get_source_store),
) -> KnowledgeIndexer:
    return KnowledgeIndexer(index, sources)


def get_orchestrator(
    model: BaseModelClient | None = Depends(get_model),
    agents: AgentStore = Depends(get_agent_store),
    conversations: ConversationStore = Depends(get_conversation_store),
    retriever: KnowledgeRetriever = Depends(get_retriever),
    cache: ToolSchemaCache = Depends(get_schema_cache),
) -> TurnOrchestrator:
    tool_loop = ToolLoopController(model, McpClient(), cache) if model else None
    api_executor = ApiToolExecutor(model) if model else None
    return TurnOrchestrator(
        model=model,
        agents=agents,
        conversations=conversations,
        retriever=retriever,
        tool_loop=tool_loop,
        api_executor=api_executor,
    )


def _require_user(user_id: str | None) -> str:
    user = normalize_user(user_id)
    if not user:
        raise TurnValidationError("User id is required")
    return user


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/agents/detect-api", response_model=DetectionResult, summary="Detect API type")
async def detect_api_endpoint(req: DetectApiRequest) -> DetectionResult:
    """Probe a URL for GraphQL introspection or an OpenAPI document."""
    if not req.url:
        raise TurnValidationError("URL is required")
    return await detect_api(req.url, api_key=req.api_key, headers=req.headers)


@app.post("/agents", response_model=Agent, status_code=201, summary="Create an agent")
async def create_agent(
    req: AgentCreateRequest, agents: AgentStore = Depends(get_agent_store)
) -> Agent:
    owner = _require_user(req.user_id)
    if not req.name.strip():
        raise TurnValidationError("Agent name is required")
    return agents.create(
        owner,
        req.name,
        personality=req.personality,
        emoji=req.emoji,
        visibility=req.visibility,
    )


@app.get("/agents", response_model=List[Agent], summary="List a user's agents")
async def list_agents(user_id: str = "", agents: AgentStore = Depends(get_agent_store)) -> List[Agent]:
    return agents.list_for_owner(_require_user(user_id))


@app.get("/agents/{agent_id}", response_model=Agent, summary="Get an agent")
async def get_agent(
    agent_id: str, user_id: str = "", agents: AgentStore = Depends(get_agent_store)
) -> Agent:
    return load_agent_for(agents, agent_id, _require_user(user_id))


@app.patch("/agents/{agent_id}", response_model=Agent, summary="Update an agent")
async def update_agent(
    agent_id: str, req: AgentUpdateRequest, agents: AgentStore = Depends(get_agent_store)
) -> Agent:
    load_agent_for(agents, agent_id, _require_user(req.user_id), owner_only=True)
    changes = AgentUpdate.model_validate(req.model_dump(exclude={"user_id"}, exclude_unset=True))
    return agents.update(agent_id, changes)


@app.delete("/agents/{agent_id}", summary="Delete an agent")
async def delete_agent(
    agent_id: str, user_id: str = "", agents: AgentStore = Depends(get_agent_store)
) -> Dict[str, bool]:
    load_agent_for(agents, agent_id, _require_user(user_id), owner_only=True)
    return {"success": agents.delete(agent_id)}


@app.post("/agents/{agent_id}/chat", response_model=ChatResponse, summary="Chat with an agent")
async def chat(
    agent_id: str,
    req: ChatRequest,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Run one conversational turn."""
    reply = await orchestrator.handle_turn(agent_id, req.user_id, req.message)
    return ChatResponse(
        message=reply.message, agent_name=reply.agent_name, agent_emoji=reply.agent_emoji
    )


@app.get("/agents/{agent_id}/chat", response_model=HistoryResponse, summary="Chat history")
async def chat_history(
    agent_id: str,
    user_id: str = "",
    limit: int = 50,
    agents: AgentStore = Depends(get_agent_store),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> HistoryResponse:
    user = _require_user(user_id)
    load_agent_for(agents, agent_id, user)
    turns = conversations.history(agent_id, user, limit)
    return HistoryResponse(messages=[HistoryMessage.from_turn(t) for t in turns])


@app.delete("/agents/{agent_id}/chat", summary="Clear chat history")
async def clear_chat(
    agent_id: str,
    user_id: str = "",
    agents: AgentStore = Depends(get_agent_store),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> Dict[str, int]:
    user = _require_user(user_id)
    load_agent_for(agents, agent_id, user)
    return {"deleted": conversations.clear(agent_id, user)}


@app.post(
    "/agents/{agent_id}/knowledge",
    response_model=KnowledgeSource,
    status_code=201,
    summary="Add a knowledge source",
)
async def add_knowledge(
    agent_id: str,
    req: KnowledgeSourceRequest,
    agents: AgentStore = Depends(get_agent_store),
    sources: KnowledgeSourceStore = Depends(get_source_store),
) -> KnowledgeSource:
    load_agent_for(agents, agent_id, _require_user(req.user_id), owner_only=True)
    url = req.url.strip()
    return sources.add(agent_id, url, req.title or url, req.content_type)


@app.get(
    "/agents/{agent_id}/knowledge",
    response_model=List[KnowledgeSource],
    summary="List knowledge sources",
)
async def list_knowledge(
    agent_id: str,
    user_id: str = "",
    agents: AgentStore = Depends(get_agent_store),
    sources: KnowledgeSourceStore = Depends(get_source_store),
) -> List[KnowledgeSource]:
    load_agent_for(agents, agent_id, _require_user(user_id))
    return sources.list(agent_id)


@app.post(
    "/agents/{agent_id}/knowledge/{source_id}/index",
    response_model=KnowledgeSource,
    summary="Index a knowledge source",
)
async def index_knowledge(
    agent_id: str,
    source_id: str,
    user_id: str = "",
    agents: AgentStore = Depends(get_agent_store),
    sources: KnowledgeSourceStore = Depends(get_source_store),
    indexer: KnowledgeIndexer = Depends(get_indexer),
) -> KnowledgeSource:
    load_agent_for(agents, agent_id, _require_user(user_id), owner_only=True)
    source = sources.get(source_id)
    if source is None or source.agent_id != agent_id:
        raise AgentNotFoundError("Knowledge source not found")
    return await indexer.index_source(source)


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in dev docker-compose).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path for library use
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting agentdesk API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )

    get_agent_store().init()
    get_source_store().init()
    get_conversation_store().init()
    if get_model() is None:
        logger.warning("No model credentials for provider '%s'", settings.MODEL_PROVIDER)

    colored_print(f"🤖 agentdesk API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "agentdesk.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m agentdesk.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
