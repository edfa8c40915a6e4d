from __future__ import annotations

from functools import lru_cache

from ragkit.app.settings import settings
from ragkit.rag.embeddings import (
    EmbeddingConfigReport,
    EmbeddingProvider,
    build_embedder,
    build_embedding_config_report,
)
from ragkit.rag.llm import GenerationProvider, build_generator
from ragkit.rag.pipeline import RAGPipeline
from ragkit.vectorstore.collections import CollectionRegistry


@lru_cache
def get_embedder() -> EmbeddingProvider:
    return build_embedder(settings.embedding_config())


@lru_cache
def get_generator() -> GenerationProvider:
    return build_generator(settings.llm_config())


@lru_cache
def get_registry() -> CollectionRegistry:
    return CollectionRegistry(dimension=get_embedder().dimension)


def get_pipeline(collection: str | None = None, create: bool = True) -> RAGPipeline:
    """Build a pipeline bound to the named collection's store.

    The default collection always exists; others raise NotFound unless
    ``create`` is set.
    """
    name = collection or settings.default_collection
    registry = get_registry()
    if create or name == settings.default_collection:
        store = registry.get_or_create(name)
    else:
        store = registry.get(name)
    return RAGPipeline.build(
        store=store,
        embedder=get_embedder(),
        generator=get_generator(),
        config=settings.pipeline_config(),
    )


def reset_pipeline_cache() -> None:
    get_registry.cache_clear()
    get_generator.cache_clear()
    get_embedder.cache_clear()


def get_embedding_config_report() -> EmbeddingConfigReport:
    return build_embedding_config_report(
        settings.embedding_provider,
        settings.embedding_model,
        settings.embedding_dimension,
    )
