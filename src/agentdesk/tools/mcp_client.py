"""
Minimal JSON-RPC client for MCP tool servers.

Only two methods of the protocol are used:

- ``tools/list``  -> discover the server's callable tools
- ``tools/call``  -> invoke one tool with an ``arguments`` object

The strict methods (:meth:`McpClient.list_tools`, :meth:`McpClient.call_tool`) raise
:class:`McpError`; the best-effort ones (:meth:`McpClient.discover`, :meth:`McpClient.invoke`)
swallow every failure into an empty/``None`` result so a broken server never fails a turn.
"""

import itertools
import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
)

import httpx

from agentdesk.config import settings
from agentdesk.core.schema import (
    ToolDescriptor,
    ToolServerConfig,
)

logger = logging.getLogger(__name__)


class McpError(RuntimeError):
    """Raised when a tool server cannot be reached or answers with an error."""


def build_server_headers(server: ToolServerConfig) -> Dict[str, str]:
    """Default JSON-RPC headers, then static server headers, then the bearer credential."""
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json, text/event-stream",
    }
    for key, value in server.headers.items():
        headers[key] = str(value)
    if server.api_key and not any(k.lower() == "authorization" for k in headers):
        headers["Authorization"] = f"Bearer {server.api_key}"
    return headers


def _decode_body(response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON body, or the last JSON ``data:`` line of an event stream."""
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" in content_type:
        payload = None
        for line in response.text.splitlines():
            if line.startswith("data:"):
                chunk = line[len("data:") :].strip()
                if chunk.startswith("{"):
                    payload = chunk
        if payload is None:
            raise McpError("event stream carried no JSON payload")
        data = json.loads(payload)
    else:
        data = response.json()
    if not isinstance(data, dict):
        raise McpError("JSON-RPC response is not an object")
    return data


class McpClient:
    """Stateless JSON-RPC caller; one HTTP connection per request."""

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout if timeout is not None else settings.MCP_TIMEOUT
        self._transport = transport
        self._ids = itertools.count(1)

    def _next_id(self) -> int:
        return next(self._ids)

    async def _rpc(
        self, endpoint: str, headers: Mapping[str, str], method: str, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Send one JSON-RPC request and return the decoded response object."""
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(endpoint, json=payload, headers=dict(headers))
        except httpx.HTTPError as exc:
            raise McpError(f"{method} to {endpoint} failed: {exc}") from exc

        if not response.is_success:
            raise McpError(
                f"{method} to {endpoint} returned HTTP {response.status_code}: "
                f"{response.text[:300]}"
            )
        try:
            data = _decode_body(response)
        except ValueError as exc:
            raise McpError(f"{method} to {endpoint} returned invalid JSON: {exc}") from exc

        if data.get("error"):
            raise McpError(f"{method} to {endpoint} returned error: {data['error']}")
        return data

    # ------------------------------------------------------------------ #
    # Strict API
    # ------------------------------------------------------------------ #
    async def list_tools(self, endpoint: str, headers: Mapping[str, str]) -> List[ToolDescriptor]:
        """Return the tools exposed by *endpoint*; raises :class:`McpError`."""
        data = await self._rpc(endpoint, headers, "tools/list", {})
        result = data.get("result") or {}
        if not isinstance(result, dict):
            raise McpError(f"tools/list from {endpoint} returned a non-object result")
        raw_tools = result.get("tools") or []
        if not isinstance(raw_tools, list):
            raise McpError(f"tools/list from {endpoint} returned a non-list tools field")
        tools = []
        for raw in raw_tools:
            if not isinstance(raw, dict) or not raw.get("name"):
                continue
            try:
                tools.append(ToolDescriptor.from_wire(raw))
            except (ValueError, TypeError, AttributeError) as exc:
                logger.debug("Skipping malformed tool %r: %s", raw.get("name"), exc)
        logger.info("Discovered %d tools from %s", len(tools), endpoint)
        return tools

    async def call_tool(
        self, endpoint: str, headers: Mapping[str, str], tool_name: str, args: Dict[str, Any]
    ) -> str:
        """Invoke *tool_name* and return its text result; raises :class:`McpError`."""
        logger.info("Calling tool %s with args=%s", tool_name, args)
        data = await self._rpc(
            endpoint, headers, "tools/call", {"name": tool_name, "arguments": args}
        )
        result = data.get("result")
        text = None
        if isinstance(result, dict):
            content = result.get("content")
            if isinstance(content, list) and content and isinstance(content[0], dict):
                text = content[0].get("text")
        if not text:
            text = json.dumps(result if result else data)
        logger.info("Tool %s returned %d chars", tool_name, len(text))
        return text

    # ------------------------------------------------------------------ #
    # Best-effort API
    # ------------------------------------------------------------------ #
    async def discover(self, endpoint: str, headers: Mapping[str, str]) -> List[ToolDescriptor]:
        """Like :meth:`list_tools` but returns ``[]`` on any failure."""
        try:
            return await self.list_tools(endpoint, headers)
        except McpError as exc:
            logger.warning("Tool discovery failed: %s", exc)
            return []

    async def invoke(
        self, endpoint: str, headers: Mapping[str, str], tool_name: str, args: Dict[str, Any]
    ) -> str | None:
        """Like :meth:`call_tool` but returns ``None`` on any failure."""
        try:
            return await self.call_tool(endpoint, headers, tool_name, args)
        except McpError as exc:
            logger.warning("Tool %s failed: %s", tool_name, exc)
            return None
