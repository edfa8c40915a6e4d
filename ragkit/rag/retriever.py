from __future__ import annotations

"""Query embedding, similarity lookup and context formatting."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from ragkit.rag.embeddings import EmbeddingProvider, validate_embeddings
from ragkit.rag.errors import EmbeddingFailure, ValidationError
from ragkit.rag.prompts import CONTEXT_SEPARATOR
from ragkit.rag.types import Document, SearchResult
from ragkit.vectorstore.index import SimilarityIndex

logger = logging.getLogger(__name__)


async def embed_with_timeout(
    embedder: EmbeddingProvider,
    texts: Sequence[str],
    timeout: float | None,
    stage: str,
    dimension: int | None = None,
) -> list[list[float]]:
    """Call the embedding capability and validate one vector per text.

    Errors, timeouts and malformed vectors all surface as EmbeddingFailure.
    """
    try:
        vectors = await asyncio.wait_for(embedder.embed(list(texts)), timeout=timeout)
        return validate_embeddings(vectors, len(texts), dimension)
    except EmbeddingFailure as exc:
        if exc.stage is None:
            exc.stage = stage
        raise
    except asyncio.TimeoutError as exc:
        raise EmbeddingFailure(
            f"Embedding call timed out after {timeout}s", stage=stage, cause=exc, timeout=True
        ) from exc
    except Exception as exc:
        raise EmbeddingFailure(str(exc) or type(exc).__name__, stage=stage, cause=exc) from exc


@dataclass
class Retriever:
    """Embed a query and return the nearest stored documents in rank order."""
    embedder: EmbeddingProvider
    index: SimilarityIndex
    top_k: int = 5
    timeout: float | None = 30.0

    async def embed_query(self, query: str) -> list[float]:
        """Embed a single query, expecting exactly one vector back."""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query must be a non-empty string")
        dimension = self.index.store.dimension
        vectors = await embed_with_timeout(
            self.embedder,
            [query],
            self.timeout,
            stage="embedding",
            dimension=self.embedder.dimension if dimension is None else dimension,
        )
        return vectors[0]

    def search(self, vector: Sequence[float], top_k: int | None = None) -> list[SearchResult]:
        """Rank stored documents against an already embedded query."""
        limit = self.top_k if top_k is None else top_k
        return self.index.search(vector, top_k=limit)

    async def retrieve_scored(self, query: str, top_k: int | None = None) -> list[SearchResult]:
        """Return ranked results with their similarity scores."""
        vector = await self.embed_query(query)
        results = self.search(vector, top_k=top_k)
        logger.info(
            "retrieval_complete",
            extra={
                "results": len(results),
                "query_length": len(query),
                "top_score": results[0].score if results else None,
            },
        )
        return results

    async def retrieve(self, query: str, top_k: int | None = None) -> list[Document]:
        """Return the documents most similar to the query, best first."""
        results = await self.retrieve_scored(query, top_k=top_k)
        return [result.document for result in results]

    @staticmethod
    def format_context(documents: Sequence[Document]) -> str:
        """Join document contents with the context separator; empty input gives ''."""
        return CONTEXT_SEPARATOR.join(document.content for document in documents)
