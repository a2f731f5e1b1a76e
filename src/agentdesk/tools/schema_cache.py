"""
TTL-bounded cache of tool descriptors, keyed by tool-server endpoint.

Descriptors are server-level data, so agents sharing an endpoint share an entry.  Staleness is
binary: an entry older than the TTL is ignored and refreshed; a failed refresh yields no tools for
this call and leaves the stale entry in place for the next attempt.
"""

import logging
import time
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Tuple,
)

from agentdesk.config import settings
from agentdesk.core.schema import ToolDescriptor
from agentdesk.tools.mcp_client import McpError

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, Mapping[str, str]], Awaitable[List[ToolDescriptor]]]


@dataclass(frozen=True)
class CacheEntry:
    """Descriptors discovered for one endpoint and when they were fetched."""

    tools: Tuple[ToolDescriptor, ...]
    fetched_at: float


class ToolSchemaCache:
    """
    Endpoint -> tool descriptor cache.

    Parameters
    ----------
    fetch:
        Coroutine performing discovery (normally :meth:`McpClient.list_tools`).  It must *raise*
        on failure so a failure is never cached as an empty tool list.
    ttl:
        Entry lifetime in seconds.
    clock:
        Monotonic time source; injectable so tests can expire entries deterministically.
    """

    def __init__(
        self,
        fetch: Fetcher,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._ttl = ttl if ttl is not None else settings.TOOL_SCHEMA_TTL
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def peek(self, endpoint: str) -> CacheEntry | None:
        """Return the raw entry for *endpoint* (fresh or stale) without refreshing."""
        return self._entries.get(endpoint)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self._ttl

    async def get_or_refresh(
        self, endpoint: str, headers: Mapping[str, str]
    ) -> List[ToolDescriptor]:
        """Return cached descriptors for *endpoint*, discovering them when absent or expired."""
        entry = self._entries.get(endpoint)
        if entry is not None and self._is_fresh(entry):
            logger.debug("Using cached tools for %s", endpoint)
            return list(entry.tools)

        try:
            tools = await self._fetch(endpoint, headers)
        except McpError as exc:
            logger.warning("Could not refresh tools for %s: %s", endpoint, exc)
            return []

        # Replace, never mutate: concurrent readers keep the entry they already hold
        self._entries[endpoint] = CacheEntry(tools=tuple(tools), fetched_at=self._clock())
        return list(tools)

    def invalidate(self, endpoint: str) -> None:
        """Drop the entry for *endpoint*."""
        self._entries.pop(endpoint, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
