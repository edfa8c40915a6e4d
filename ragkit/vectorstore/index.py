from __future__ import annotations

"""Exact cosine-similarity search over a document store."""

import heapq
import logging
from dataclasses import dataclass
from typing import Sequence

from ragkit.rag.errors import DimensionMismatch, EmptyStore, ValidationError
from ragkit.rag.types import SearchResult
from ragkit.rag.vectors import cosine_similarity, validate_vector
from ragkit.vectorstore.inmemory import InMemoryDocumentStore

logger = logging.getLogger(__name__)


def _rank_key(result: SearchResult) -> tuple[float, str]:
    return (-result.score, result.document.doc_id)


@dataclass
class SimilarityIndex:
    """Brute-force k-nearest-neighbour search; nothing is cached across calls."""
    store: InMemoryDocumentStore

    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        require_non_empty: bool = False,
    ) -> list[SearchResult]:
        """Rank stored documents by cosine similarity to the query.

        Results are ordered by descending score with ties broken by ascending
        document id, and contain ``min(top_k, store.size())`` entries.
        """
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
            raise ValidationError("top_k must be a positive integer")
        snapshot = self.store.snapshot()
        dimension = self.store.dimension
        if dimension is not None and len(query_embedding) != dimension:
            raise DimensionMismatch(expected=dimension, actual=len(query_embedding))
        query = validate_vector(query_embedding, dimension)
        if not snapshot:
            if require_non_empty:
                raise EmptyStore(f"Collection {self.store.name} has no documents")
            return []
        scored = [
            SearchResult(document=document, score=cosine_similarity(query, document.embedding))
            for document in snapshot.values()
            if document.embedding is not None
        ]
        ranked = heapq.nsmallest(top_k, scored, key=_rank_key)
        logger.debug(
            "similarity_search",
            extra={
                "store": self.store.name,
                "candidates": len(scored),
                "returned": len(ranked),
            },
        )
        return [
            SearchResult(document=result.document.copy(), score=result.score)
            for result in ranked
        ]
