"""
Thin wrapper around Chroma for storing & querying agent knowledge chunks.

Each chunk is one document:
  text     = a slice of a fetched knowledge source
  metadata = { "agent_id": str, "source_id": str, "chunk_index": int }

The collection uses cosine space, so ``similarity = 1 - distance``.
"""

import logging
from typing import (
    Any,
    List,
    Sequence,
    cast,
)

import chromadb
from chromadb.api.types import EmbeddingFunction
from chromadb.utils import embedding_functions

from agentdesk.config import settings
from agentdesk.core.schema import KnowledgeChunk

logger = logging.getLogger(__name__)


class KnowledgeIndex:
    """
    Chroma wrapper for agent-scoped similarity search.

    The client and collection are created lazily by :meth:`init` so importing or constructing
    the index never touches the network.
    """

    def __init__(
        self,
        collection_name: str = "agent_knowledge",
        host: str | None = None,
        port: int | None = None,
        client: Any | None = None,
        embed_fn: EmbeddingFunction | None = None,
    ):
        self._collection_name = collection_name
        self._host = host or settings.VECTOR_DB_HOST
        self._port = port or settings.VECTOR_DB_PORT
        self._client = client
        self._embed_fn = embed_fn
        self._col: Any = None

    def init(self) -> None:
        """Connect to Chroma and get or create the collection."""
        if self._col is not None:
            return
        if self._client is None:
            self._client = chromadb.HttpClient(host=self._host, port=self._port)
        if self._embed_fn is None:
            self._embed_fn = embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=settings.EMBED_MODEL
            )
        self._col = self._client.get_or_create_collection(
            name=self._collection_name,
            embedding_function=cast(EmbeddingFunction, self._embed_fn),
            metadata={"hnsw:space": "cosine"},
        )
        logger.info("Knowledge index ready (collection '%s')", self._collection_name)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def embed(self, text: str) -> List[float]:
        """Embedding vector for *text*."""
        self.init()
        vectors = cast(EmbeddingFunction, self._embed_fn)([text])
        return [float(x) for x in vectors[0]]

    def add_chunks(self, agent_id: str, source_id: str, chunks: Sequence[str]) -> int:
        """Upsert the chunks of one source; returns how many were stored."""
        self.init()
        if not chunks:
            return 0
        self._col.upsert(
            ids=[f"{source_id}:{i}" for i in range(len(chunks))],
            documents=list(chunks),
            metadatas=[
                {"agent_id": agent_id, "source_id": source_id, "chunk_index": i}
                for i in range(len(chunks))
            ],
        )
        return len(chunks)

    def delete_source(self, source_id: str) -> None:
        """Remove every chunk of *source_id*."""
        self.init()
        self._col.delete(where={"source_id": source_id})

    def match_chunks(
        self,
        agent_id: str,
        embedding: Sequence[float],
        match_count: int,
        match_threshold: float,
    ) -> List[KnowledgeChunk]:
        """Chunks of *agent_id* at or above *match_threshold*, most similar first."""
        self.init()
        res = self._col.query(
            query_embeddings=[list(embedding)],
            n_results=match_count,
            where={"agent_id": agent_id},
            include=["documents", "distances"],
        )
        documents = (res.get("documents") or [[]])[0] or []
        distances = (res.get("distances") or [[]])[0] or []

        chunks = []
        for doc, distance in zip(documents, distances):
            similarity = 1.0 - float(distance)
            if similarity >= match_threshold:
                chunks.append(KnowledgeChunk(content=doc, similarity=similarity))
        chunks.sort(key=lambda c: c.similarity, reverse=True)
        logger.debug("Knowledge query for %s matched %d chunks", agent_id, len(chunks))
        return chunks[:match_count]

    # Convenience for tests / admin
    def count(self) -> int:
        """Return number of chunks in the collection."""
        self.init()
        return self._col.count()
