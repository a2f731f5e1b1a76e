"""Per-turn orchestration: knowledge + tools -> system instruction -> model -> persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Any,
    List,
    Tuple,
)

from agentdesk.agent.api_executor import ApiToolExecutor
from agentdesk.agent.model_interface import BaseModelClient
from agentdesk.agent.prompt_assembler import (
    PromptAssembler,
    PromptSections,
)
from agentdesk.agent.tool_loop import (
    ServerContribution,
    ToolLoopController,
)
from agentdesk.config import settings
from agentdesk.core.schema import (
    Agent,
    Content,
    GenerationConfig,
)
from agentdesk.memory.knowledge_retriever import KnowledgeRetriever
from agentdesk.memory.memory_store import (
    AgentStore,
    ConversationStore,
)
from agentdesk.tools.relevance import is_relevant

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm sorry, I couldn't generate a response."


class NotConfiguredError(RuntimeError):
    """A required collaborator (model credential, datastore) is missing."""


class TurnValidationError(ValueError):
    """The request is missing a required field."""


class AgentNotFoundError(LookupError):
    """No agent with the requested id."""


class AccessDeniedError(PermissionError):
    """The user may not use or modify this agent."""


def normalize_user(user_id: str | None) -> str:
    """User identities are compared case-insensitively."""
    return (user_id or "").strip().lower()


def load_agent_for(
    agents: AgentStore, agent_id: str, user_id: str, owner_only: bool = False
) -> Agent:
    """Fetch *agent_id* and check that *user_id* may use (or, with *owner_only*, modify) it."""
    agent = agents.get(agent_id)
    if agent is None:
        raise AgentNotFoundError("Agent not found")
    allowed = agent.owner_id == user_id if owner_only else agent.can_access(user_id)
    if not allowed:
        raise AccessDeniedError("Access denied")
    return agent


@dataclass
class TurnReply:
    """What a turn hands back to the caller."""

    message: str
    agent_name: str
    agent_emoji: str


class TurnOrchestrator:
    """
    Composes the pipeline for one chat message.

    Failure policy: a missing model or store is fatal for the turn; every failure inside
    knowledge retrieval or tool execution only removes that source's contribution.
    """

    def __init__(
        self,
        model: BaseModelClient | None,
        agents: AgentStore | None,
        conversations: ConversationStore | None,
        retriever: KnowledgeRetriever | None,
        tool_loop: ToolLoopController | None,
        api_executor: ApiToolExecutor | None,
        assembler: PromptAssembler | None = None,
        history_limit: int | None = None,
    ):
        self.model = model
        self.agents = agents
        self.conversations = conversations
        self.retriever = retriever
        self.tool_loop = tool_loop
        self.api_executor = api_executor
        self.assembler = assembler or PromptAssembler()
        self.history_limit = history_limit if history_limit is not None else settings.HISTORY_LIMIT

    # ------------------------------------------------------------------ #
    # Context gathering
    # ------------------------------------------------------------------ #
    async def gather_knowledge(self, agent: Agent, message: str) -> str:
        if not agent.use_knowledge_base or self.retriever is None:
            return ""
        try:
            return await self.retriever.gather(agent.id, message)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Knowledge retrieval failed for %s: %s", agent.id, exc)
            return ""

    async def gather_mcp(self, agent: Agent, message: str) -> Tuple[List[str], List[str]]:
        """Run the tool loop for every relevant server; returns (results, capabilities)."""
        if not agent.mcp_enabled or not agent.mcp_servers or self.tool_loop is None:
            return [], []

        lines = ["## Available MCP Servers:"]
        for server in agent.mcp_servers:
            line = f"- **{server.name}** ({server.url})"
            if server.description:
                line += f": {server.description}"
            if server.instructions:
                line += f"\n  Instructions: {server.instructions}"
            lines.append(line)
        capabilities = ["\n".join(lines)]

        relevant = [s for s in agent.mcp_servers if is_relevant(s, message)]
        outcomes = await asyncio.gather(
            *(self.tool_loop.run(server, message) for server in relevant), return_exceptions=True
        )

        results: List[str] = []
        for server, outcome in zip(relevant, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Error processing server %s: %s", server.name, outcome)
                continue
            contribution: ServerContribution = outcome
            if contribution.search_context:
                capabilities.append(
                    f"Context about {server.name}:\n{contribution.search_context}"
                )
            catalog = contribution.catalog()
            if catalog:
                capabilities.append(catalog)
            text = contribution.results_text()
            if text:
                results.append(text)
        return results, capabilities

    async def gather_api(self, agent: Agent, message: str) -> Tuple[List[str], List[str]]:
        """Call every relevant API tool concurrently; returns (results, capabilities)."""
        if not agent.api_enabled or not agent.api_tools or self.api_executor is None:
            return [], []

        lines = ["## Available API Tools:"]
        for tool in agent.api_tools:
            line = f"- **{tool.name}** [{tool.method}] {tool.url}"
            if tool.description:
                line += f": {tool.description}"
            if tool.instructions:
                line += f"\n  Instructions: {tool.instructions}"
            lines.append(line)

        outcomes = await asyncio.gather(
            *(self.api_executor.invoke(tool, message) for tool in agent.api_tools),
            return_exceptions=True,
        )
        results: List[str] = []
        for tool, outcome in zip(agent.api_tools, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Error calling API tool %s: %s", tool.name, outcome)
            elif outcome:
                results.append(f"\n--- Result from {tool.name} ---\n{outcome}")
        return results, ["\n".join(lines)]

    async def build_system_instruction(self, agent: Agent, message: str) -> str:
        """Gather knowledge and tool output concurrently and assemble the system instruction."""
        knowledge, (mcp_results, mcp_caps), (api_results, api_caps) = await asyncio.gather(
            self.gather_knowledge(agent, message),
            self.gather_mcp(agent, message),
            self.gather_api(agent, message),
        )
        return self.assembler.assemble(
            PromptSections(
                personality=agent.personality_text(),
                knowledge=knowledge,
                tool_results=mcp_results + api_results,
                capabilities=mcp_caps + api_caps,
            )
        )

    # ------------------------------------------------------------------ #
    # Turn
    # ------------------------------------------------------------------ #
    def _collaborators(self) -> Tuple[BaseModelClient, AgentStore, ConversationStore]:
        """Return the model and the stores, or raise when any of them is missing."""
        if self.model is None:
            raise NotConfiguredError("Language model not configured")
        if self.agents is None or self.conversations is None:
            raise NotConfiguredError("Datastore not configured")
        return self.model, self.agents, self.conversations

    async def handle_turn(self, agent_id: str, user_id: str, message: str) -> TurnReply:
        """Answer *message* from *user_id* to *agent_id* and persist both sides."""
        model, agents, conversations = self._collaborators()

        user_id = normalize_user(user_id)
        message = (message or "").strip()
        if not user_id or not message:
            raise TurnValidationError("User id and message are required")
        agent = load_agent_for(agents, agent_id, user_id)

        logger.info("Turn for agent %s from %s: %s", agent.id, user_id, message[:50])
        history = conversations.recent(agent.id, user_id, self.history_limit)
        system_instruction = await self.build_system_instruction(agent, message)
        logger.debug("System instruction:\n%s", system_instruction)

        contents = [Content.text(turn.role, turn.content) for turn in history]
        contents.append(Content.text("user", message))

        # The user's message is stored before the model call, the reply after it
        conversations.append(agent.id, user_id, "user", message)

        config_kwargs: dict[str, Any] = {
            "system_instruction": system_instruction,
            "model": agent.model,
            "max_output_tokens": settings.REPLY_MAX_TOKENS,
            "temperature": settings.REPLY_TEMPERATURE,
            "web_search": agent.web_search_enabled,
        }
        reply = await model.generate(contents, GenerationConfig(**config_kwargs))
        reply = reply or FALLBACK_REPLY

        conversations.append(agent.id, user_id, "model", reply)
        agents.increment_message_count(agent.id)
        logger.info("Generated reply for agent %s (%d chars)", agent.id, len(reply))
        return TurnReply(message=reply, agent_name=agent.name, agent_emoji=agent.emoji)
