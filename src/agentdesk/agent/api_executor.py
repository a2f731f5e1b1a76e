"""Invokes user-configured REST / GraphQL / OpenAPI tools and wraps transport errors."""

import json
import logging
from typing import (
    Any,
    Dict,
    Mapping,
)

import httpx

from agentdesk.agent.model_interface import (
    BaseModelClient,
    ModelCallError,
    sanitize_json_string,
    strip_code_fences,
)
from agentdesk.config import settings
from agentdesk.core.schema import (
    GraphQLApiTool,
    OpenApiTool,
    RestApiTool,
)
from agentdesk.tools.relevance import is_relevant

logger = logging.getLogger(__name__)

ApiTool = RestApiTool | GraphQLApiTool | OpenApiTool

RESULT_MAX_CHARS = 8000
ERROR_BODY_MAX_CHARS = 2000
_BODY_METHODS = {"POST", "PUT", "PATCH"}


class ToolExecutionError(RuntimeError):
    """Raised when a configured API cannot be reached."""


def sanitize_headers(headers: Mapping[str, Any]) -> Dict[str, str]:
    """Drop header names that are empty or contain a colon or a space."""
    clean: Dict[str, str] = {}
    for key, value in headers.items():
        name = str(key).strip()
        if not name or ":" in name or " " in name:
            logger.warning("Skipping invalid header name: %r", key)
            continue
        clean[name] = str(value)
    return clean


class ApiToolExecutor:
    """
    Calls one configured API tool per :meth:`invoke`.

    Request bodies depend on the tool's declared protocol:

    - GraphQL: the model writes a query from the stored schema text.
    - OpenAPI: the model writes a JSON body from the stored schema text.
    - REST: the raw message under ``query``, ``message`` and ``text``.
    """

    GRAPHQL_PROMPT = """\
Write a single GraphQL query that answers the user's request against this API.

API: {name}
{schema_label}:
{schema}

User's request: "{message}"

Respond with ONLY the GraphQL query, no explanation and no markdown."""

    OPENAPI_PROMPT = """\
Write the JSON request body for a {method} call to {url} that answers the user's request.

API: {name}
{schema_label}:
{schema}

User's request: "{message}"

Respond with ONLY a JSON object, no explanation and no markdown."""

    def __init__(
        self,
        model: BaseModelClient,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self._timeout = timeout if timeout is not None else settings.API_TOOL_TIMEOUT
        self._transport = transport

    # ------------------------------------------------------------------ #
    # Request construction
    # ------------------------------------------------------------------ #
    @staticmethod
    def build_headers(tool: ApiTool) -> Dict[str, str]:
        """Default headers, sanitised static headers, then the bearer credential."""
        headers = {"User-Agent": "agentdesk/0.1", "Content-Type": "application/json"}
        headers.update(sanitize_headers(tool.headers))
        if tool.api_key and not any(k.lower() == "authorization" for k in headers):
            headers["Authorization"] = f"Bearer {tool.api_key}"
        return headers

    @staticmethod
    def _schema_source(tool: GraphQLApiTool | OpenApiTool) -> tuple[str, str]:
        if tool.schema_text:
            return "Schema", tool.schema_text
        fallback = "\n".join(t for t in (tool.description, tool.instructions) if t)
        return "Description", fallback or "(no schema available)"

    async def synthesize_graphql_query(self, tool: GraphQLApiTool, message: str) -> str:
        """Ask the model for a query string; ``""`` when it produced nothing usable."""
        label, schema = self._schema_source(tool)
        prompt = self.GRAPHQL_PROMPT.format(
            name=tool.name, schema_label=label, schema=schema, message=message
        )
        try:
            response = await self.model.ask(
                prompt, max_output_tokens=settings.BODY_SYNTHESIS_MAX_TOKENS
            )
        except ModelCallError as exc:
            logger.warning("GraphQL query synthesis for %s failed: %s", tool.name, exc)
            return ""
        return strip_code_fences(response)

    async def synthesize_json_body(self, tool: OpenApiTool, message: str) -> Dict[str, Any]:
        """Ask the model for a JSON body; ``{}`` when it produced nothing parsable."""
        label, schema = self._schema_source(tool)
        prompt = self.OPENAPI_PROMPT.format(
            method=tool.method,
            url=tool.url,
            name=tool.name,
            schema_label=label,
            schema=schema,
            message=message,
        )
        try:
            response = await self.model.ask(
                prompt, max_output_tokens=settings.BODY_SYNTHESIS_MAX_TOKENS
            )
            body = json.loads(sanitize_json_string(response))
        except ModelCallError as exc:
            logger.warning("Body synthesis for %s failed: %s", tool.name, exc)
            return {}
        except ValueError as exc:
            logger.info("Unparsable body synthesised for %s: %s", tool.name, exc)
            return {}
        return body if isinstance(body, dict) else {}

    async def build_body(self, tool: ApiTool, message: str) -> Dict[str, Any] | None:
        """JSON body for *tool*, or ``None`` when the call should be skipped."""
        if isinstance(tool, GraphQLApiTool):
            query = await self.synthesize_graphql_query(tool, message)
            if not query:
                return None
            return {"query": query}
        if isinstance(tool, OpenApiTool):
            return await self.synthesize_json_body(tool, message)
        return {"query": message, "message": message, "text": message}

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    async def _request(
        self, tool: ApiTool, headers: Dict[str, str], body: Dict[str, Any] | None
    ) -> httpx.Response:
        # GraphQL always travels as a POSTed document
        method = "POST" if isinstance(tool, GraphQLApiTool) else tool.method
        kwargs: Dict[str, Any] = {"headers": headers}
        if method in _BODY_METHODS and body is not None:
            kwargs["json"] = body
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                return await client.request(method, tool.url, **kwargs)
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"Failed to reach the API {tool.name}: {exc}") from exc

    async def execute(self, tool: ApiTool, message: str) -> str | None:
        """Call *tool* regardless of relevance; ``None`` only when the call was skipped."""
        headers = self.build_headers(tool)
        body = await self.build_body(tool, message)
        if body is None:
            logger.info("No request could be built for %s; skipping", tool.name)
            return None

        logger.info("Calling API tool %s [%s] %s", tool.name, tool.method, tool.url)
        try:
            response = await self._request(tool, headers, body)
        except ToolExecutionError as exc:
            logger.warning("%s", exc)
            return str(exc)

        text = response.text
        logger.info(
            "API tool %s returned HTTP %d (%d chars)", tool.name, response.status_code, len(text)
        )
        if response.is_success:
            return text[:RESULT_MAX_CHARS] + ("..." if len(text) > RESULT_MAX_CHARS else "")
        # Error bodies are surfaced so the model can explain the failure
        return f"HTTP {response.status_code} error from {tool.name}: {text[:ERROR_BODY_MAX_CHARS]}"

    async def invoke(self, tool: ApiTool, user_message: str) -> str | None:
        """Relevance-gated :meth:`execute`; ``None`` when the tool is not worth calling."""
        if not is_relevant(tool, user_message):
            return None
        return await self.execute(tool, user_message)
