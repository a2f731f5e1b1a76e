"""
Knowledge retrieval for a turn.

Strategy:
1. Vector search over the agent's indexed chunks (:meth:`KnowledgeRetriever.retrieve`).
2. If nothing matched, fetch up to a few still-pending sources live
   (:meth:`KnowledgeRetriever.fetch_unindexed`), best-effort and concurrently.

Every failure degrades to "no knowledge from that source"; nothing here raises into a turn.
"""

import asyncio
import logging
import re
from typing import (
    List,
    Protocol,
    Sequence,
)

import httpx

from agentdesk.config import settings
from agentdesk.core.schema import (
    KnowledgeChunk,
    KnowledgeSource,
)
from agentdesk.memory.memory_store import KnowledgeSourceStore

logger = logging.getLogger(__name__)

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


class KnowledgeSearch(Protocol):
    """What the retriever needs from the vector index."""

    def embed(self, text: str) -> List[float]: ...

    def match_chunks(
        self,
        agent_id: str,
        embedding: Sequence[float],
        match_count: int,
        match_threshold: float,
    ) -> List[KnowledgeChunk]: ...


class KnowledgeWriter(Protocol):
    """What the indexer needs from the vector index."""

    def add_chunks(self, agent_id: str, source_id: str, chunks: Sequence[str]) -> int: ...


def html_to_text(html: str, max_chars: int | None = None) -> str:
    """Strip script/style blocks and all markup, collapse whitespace, optionally truncate."""
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = _WS_RE.sub(" ", text).strip()
    return text[:max_chars] if max_chars is not None else text


def format_chunk(chunk: KnowledgeChunk) -> str:
    """One-line relevance header followed by the chunk content."""
    return f"[Relevance: {int(chunk.similarity * 100 + 0.5)}%]\n{chunk.content}"


class ContentFetcher:
    """Fetches a URL as plain text; ``None`` on any failure or non-text content."""

    USER_AGENT = "Mozilla/5.0 (compatible; agentdesk/0.1)"

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT
        self._transport = transport

    async def fetch(self, url: str, max_chars: int | None = None) -> str | None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
                headers={"User-Agent": self.USER_AGENT},
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            logger.info("Could not fetch %s: %s", url, exc)
            return None

        if not response.is_success:
            logger.info("Fetching %s returned HTTP %d", url, response.status_code)
            return None
        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type and "text/plain" not in content_type:
            logger.info("Skipping %s: unsupported content type '%s'", url, content_type)
            return None
        return html_to_text(response.text, max_chars)


class KnowledgeRetriever:
    """Turns a query into ranked knowledge snippets for one agent."""

    def __init__(
        self,
        index: KnowledgeSearch,
        sources: KnowledgeSourceStore,
        fetcher: ContentFetcher | None = None,
        similarity_floor: float | None = None,
    ):
        self.index = index
        self.sources = sources
        self.fetcher = fetcher or ContentFetcher()
        self.similarity_floor = (
            similarity_floor
            if similarity_floor is not None
            else settings.KNOWLEDGE_SIMILARITY_FLOOR
        )

    async def retrieve(self, agent_id: str, query: str, max_results: int = 5) -> List[str]:
        """Formatted chunks, most similar first; ``[]`` means "fall through to the next strategy"."""
        try:
            embedding = await asyncio.to_thread(self.index.embed, query)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Error generating query embedding: %s", exc)
            return []
        if not embedding:
            return []

        try:
            chunks = await asyncio.to_thread(
                self.index.match_chunks, agent_id, embedding, max_results, self.similarity_floor
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Error retrieving chunks for %s: %s", agent_id, exc)
            return []

        chunks = sorted(chunks, key=lambda c: c.similarity, reverse=True)[:max_results]
        logger.info("Found %d relevant chunks for %s", len(chunks), agent_id)
        return [format_chunk(chunk) for chunk in chunks]

    async def _fetch_source(self, source: KnowledgeSource) -> str | None:
        content = await self.fetcher.fetch(source.url, settings.FETCH_MAX_CHARS)
        if not content:
            return None
        return f"\n--- {source.title} ({source.url}) ---\n{content}"

    async def fetch_unindexed(self, agent_id: str, limit: int | None = None) -> List[str]:
        """Live-fetch up to *limit* pending sources; failed sources are silently dropped."""
        limit = limit if limit is not None else settings.KNOWLEDGE_FALLBACK_SOURCES
        pending = self.sources.list(agent_id, status="pending", limit=limit)
        if not pending:
            return []
        logger.info("Falling back to URL fetching for %d sources", len(pending))
        results = await asyncio.gather(
            *(self._fetch_source(source) for source in pending), return_exceptions=True
        )
        contents = []
        for source, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning("Fetching %s failed: %s", source.url, result)
            elif result:
                contents.append(result)
        return contents

    async def gather(self, agent_id: str, query: str, max_results: int | None = None) -> str:
        """Knowledge section for the prompt, or ``""`` when neither strategy found anything."""
        max_results = max_results if max_results is not None else settings.KNOWLEDGE_MAX_RESULTS
        chunks = await self.retrieve(agent_id, query, max_results)
        if chunks:
            return "## Relevant Knowledge (from indexed sources):\n" + "\n\n---\n\n".join(chunks)

        fetched = await self.fetch_unindexed(agent_id)
        if fetched:
            return "## Knowledge Base Context:\n" + "\n".join(fetched)
        return ""


def chunk_text(text: str, size: int = 1000, overlap: int = 100) -> List[str]:
    """Split *text* into overlapping windows, preferring to break on whitespace."""
    chunks = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        if end < len(text):
            space = text.rfind(" ", start + size // 2, end)
            if space > start:
                end = space
        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return chunks


class KnowledgeIndexer:
    """Fetches a pending source, chunks it and stores the chunks in the index."""

    def __init__(
        self,
        index: KnowledgeWriter,
        sources: KnowledgeSourceStore,
        fetcher: ContentFetcher | None = None,
        chunk_size: int = 1000,
    ):
        self.index = index
        self.sources = sources
        self.fetcher = fetcher or ContentFetcher(timeout=settings.API_TOOL_TIMEOUT)
        self.chunk_size = chunk_size

    async def index_source(self, source: KnowledgeSource) -> KnowledgeSource:
        """Index *source*; the returned record carries its new status."""
        self.sources.set_status(source.id, "processing")
        text = await self.fetcher.fetch(source.url)
        if not text:
            logger.warning("Indexing %s failed: no text content", source.url)
            return self.sources.set_status(
                source.id, "failed", error_message="Could not fetch text content"
            ) or source

        chunks = chunk_text(text, self.chunk_size)
        try:
            stored = await asyncio.to_thread(
                self.index.add_chunks, source.agent_id, source.id, chunks
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Storing chunks for %s failed: %s", source.url, exc)
            return self.sources.set_status(source.id, "failed", error_message=str(exc)) or source

        logger.info("Indexed %s into %d chunks", source.url, stored)
        return self.sources.set_status(source.id, "indexed", chunk_count=stored) or source
