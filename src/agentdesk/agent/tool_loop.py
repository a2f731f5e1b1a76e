"""
Model-driven tool-call loop for one MCP server.

Many tool servers split "resolve an identifier" from "use the identifier", so a single call is not
enough.  Per server we run a bounded state machine:

    discover tools ──(none)──> optional web-search description, stop
         │
         ▼
    ask model for {"toolName", "args"} ──(declined / unparsable)──> NO_TOOL
         │
         ▼
    invoke tool ──(no result)──> ERROR
         │
         ▼
    classify result ──(intermediate, iterations left)──> CONTINUE (back to "ask model")
         │
         └──(final, or out of iterations)──> FINAL

The iteration bound keeps the model from chasing resolver calls forever.
"""

import json
import logging
from dataclasses import (
    dataclass,
    field,
)
from enum import Enum
from typing import (
    List,
    Protocol,
    Sequence,
)

from pydantic import ValidationError

from agentdesk.agent.model_interface import (
    BaseModelClient,
    ModelCallError,
    sanitize_json_string,
)
from agentdesk.config import settings
from agentdesk.core.schema import (
    ToolCallResult,
    ToolDescriptor,
    ToolSelection,
    ToolServerConfig,
)
from agentdesk.tools.mcp_client import (
    McpClient,
    build_server_headers,
)
from agentdesk.tools.schema_cache import ToolSchemaCache

logger = logging.getLogger(__name__)

INTERMEDIATE_MAX_CHARS = 5000
FINAL_MAX_CHARS = 10000


class LoopState(Enum):
    """Outcome of one loop iteration."""

    CONTINUE = "continue"
    FINAL = "final"
    NO_TOOL = "no_tool"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Intermediate / final classification
# ---------------------------------------------------------------------------
class ResultClassifier(Protocol):
    """Policy deciding whether a tool result is an input for another call."""

    def is_intermediate(self, tool_name: str, result_text: str) -> bool: ...


class HeuristicResultClassifier:
    """
    Name- and content-based guess at "identifier lookup" results.

    The markers come from the servers seen so far and are not exhaustive; swap in another
    :class:`ResultClassifier` for protocols that behave differently.
    """

    RESOLVER_NAMES: Sequence[str] = ("resolve-library-id",)
    NAME_MARKERS: Sequence[str] = ("resolve", "search", "list")
    RESULT_MARKERS: Sequence[str] = ("library ID", "libraryId", "Context7-compatible")

    def is_intermediate(self, tool_name: str, result_text: str) -> bool:
        if tool_name in self.RESOLVER_NAMES:
            return True
        if any(marker in tool_name for marker in self.NAME_MARKERS):
            return True
        return any(marker in result_text for marker in self.RESULT_MARKERS)


def truncate(text: str, limit: int, suffix: str = "") -> str:
    """Cut *text* to *limit* characters, appending *suffix* when something was dropped."""
    if len(text) <= limit:
        return text
    return text[:limit] + suffix


# ---------------------------------------------------------------------------
# Loop controller
# ---------------------------------------------------------------------------
@dataclass
class ServerContribution:
    """What one server added to the turn."""

    server: ToolServerConfig
    tools: List[ToolDescriptor] = field(default_factory=list)
    results: List[ToolCallResult] = field(default_factory=list)
    search_context: str | None = None
    invocations: int = 0
    final_state: LoopState | None = None

    def catalog(self) -> str:
        """Human-readable list of the discovered tools."""
        if not self.tools:
            return ""
        lines = [f"Available tools from {self.server.name}:"]
        for tool in self.tools:
            line = f"- {tool.name}"
            if tool.description:
                line += f": {tool.description[:200]}..."
            lines.append(line)
        return "\n".join(lines)

    def results_text(self) -> str:
        """Final results, each headed by server and tool name."""
        return "\n".join(
            f"\n--- Results from {self.server.name} ({result.tool_name}) ---\n{result.text}"
            for result in self.results
        )


class ToolLoopController:
    """Runs the discover -> select -> invoke -> classify loop for one server at a time."""

    SELECTION_PROMPT = """\
You are helping determine which MCP tool to call based on a user's question.

Available tools from "{server_name}":
{tools}

User's question: "{message}"

{previous}
Respond with ONLY a JSON object (no markdown, no explanation) in this exact format:
{{"toolName": "tool-name-here", "args": {{"param1": "value1", "param2": "value2"}}}}

If no tool is appropriate or needed, respond with: {{"toolName": null, "args": {{}}}}

Choose the most relevant tool and fill in appropriate parameter values based on the user's question."""

    SEARCH_PROMPT = (
        "What is {server_name} MCP server? How do I use its tools? What parameters do its main "
        "tools expect? Keep the response brief and technical."
    )

    def __init__(
        self,
        model: BaseModelClient,
        client: McpClient,
        cache: ToolSchemaCache,
        classifier: ResultClassifier | None = None,
        max_iterations: int | None = None,
        search_fallback: bool = True,
    ):
        self.model = model
        self.client = client
        self.cache = cache
        self.classifier = classifier or HeuristicResultClassifier()
        self.max_iterations = (
            max_iterations if max_iterations is not None else settings.TOOL_LOOP_MAX_ITERATIONS
        )
        self.search_fallback = search_fallback

    @staticmethod
    def describe_tools(tools: Sequence[ToolDescriptor]) -> str:
        """Render descriptors, with parameter schemas, for the selection prompt."""
        blocks = []
        for tool in tools:
            desc = f"Tool: {tool.name}"
            if tool.description:
                desc += f"\nDescription: {tool.description}"
            if tool.parameters:
                params = []
                for param in tool.parameters:
                    required = " (required)" if param.required else " (optional)"
                    line = f"  - {param.name}{required}: {param.type}"
                    if param.description:
                        line += f" - {param.description}"
                    params.append(line)
                desc += "\nParameters:\n" + "\n".join(params)
            blocks.append(desc)
        return "\n\n".join(blocks)

    async def select_tool(
        self,
        server_name: str,
        tools: Sequence[ToolDescriptor],
        message: str,
        previous_results: str = "",
    ) -> ToolSelection | None:
        """Ask the model for the next tool; ``None`` means "no tool" (declined or unparsable)."""
        if not tools:
            return None
        previous = ""
        if previous_results:
            previous = (
                f"Previous tool results:\n{previous_results}\n\n"
                "Based on these results, determine if another tool should be called.\n"
            )
        prompt = self.SELECTION_PROMPT.format(
            server_name=server_name,
            tools=self.describe_tools(tools),
            message=message,
            previous=previous,
        )
        try:
            response = await self.model.ask(prompt, max_output_tokens=settings.SELECTION_MAX_TOKENS)
        except ModelCallError as exc:
            logger.warning("Tool selection for %s failed: %s", server_name, exc)
            return None
        logger.debug("Tool selection response: %s", response[:300])

        try:
            selection = ToolSelection.model_validate(json.loads(sanitize_json_string(response)))
        except (ValueError, ValidationError) as exc:
            logger.info("Unparsable tool selection for %s: %s", server_name, exc)
            return None
        return selection if selection.tool_name else None

    async def search_context(self, server: ToolServerConfig) -> str | None:
        """Web-search-grounded description of a server whose tools could not be discovered."""
        try:
            text = await self.model.ask(
                self.SEARCH_PROMPT.format(server_name=server.name),
                max_output_tokens=settings.SEARCH_CONTEXT_MAX_TOKENS,
                web_search=True,
            )
        except ModelCallError as exc:
            logger.warning("Search context for %s failed: %s", server.name, exc)
            return None
        return text if text and len(text) > 50 else None

    async def run(self, server: ToolServerConfig, message: str) -> ServerContribution:
        """Drive the loop for *server* and return everything it contributed."""
        contribution = ServerContribution(server=server)
        headers = build_server_headers(server)

        tools = await self.cache.get_or_refresh(server.url, headers)
        if not tools:
            logger.info("No tools discovered for %s", server.name)
            if self.search_fallback:
                contribution.search_context = await self.search_context(server)
            contribution.final_state = LoopState.NO_TOOL
            return contribution
        contribution.tools = list(tools)

        previous_results = ""
        state = LoopState.CONTINUE
        iteration = 0
        while state is LoopState.CONTINUE and iteration < self.max_iterations:
            iteration += 1
            selection = await self.select_tool(server.name, tools, message, previous_results)
            if selection is None or selection.tool_name is None:
                logger.info("No further tool for %s after %d calls", server.name, iteration - 1)
                state = LoopState.NO_TOOL
                break

            logger.info("Iteration %d: selected tool '%s'", iteration, selection.tool_name)
            result = await self.client.invoke(
                server.url, headers, selection.tool_name, selection.args
            )
            contribution.invocations += 1
            if result is None:
                state = LoopState.ERROR
                break

            intermediate = self.classifier.is_intermediate(selection.tool_name, result)
            logger.info(
                "Tool %s result is %s",
                selection.tool_name,
                "intermediate" if intermediate else "final",
            )
            if intermediate and iteration < self.max_iterations:
                previous_results += (
                    f"\n\nResult from {selection.tool_name}:\n"
                    f"{truncate(result, INTERMEDIATE_MAX_CHARS)}"
                )
                state = LoopState.CONTINUE
            else:
                contribution.results.append(
                    ToolCallResult(
                        tool_name=selection.tool_name,
                        text=truncate(result, FINAL_MAX_CHARS, "..."),
                        intermediate=intermediate,
                    )
                )
                state = LoopState.FINAL

        contribution.final_state = state
        return contribution
