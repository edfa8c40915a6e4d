from __future__ import annotations

"""Provider and pipeline configuration, validated at construction time."""

from dataclasses import dataclass
from typing import Literal, Union

from ragkit.rag.errors import ConfigError

OPENAI_EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def resolve_openai_dimension(model: str) -> int | None:
    """Return the native dimension of a known OpenAI embedding model."""
    return OPENAI_EMBEDDING_DIMENSIONS.get(model)


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ConfigError(f"{name} must be greater than zero")


@dataclass(frozen=True)
class HashEmbeddingConfig:
    """Offline token-hash embeddings."""
    dimension: int = 256
    provider: Literal["hash"] = "hash"

    def __post_init__(self) -> None:
        _require_positive("EMBEDDING_DIMENSION", self.dimension)


@dataclass(frozen=True)
class OpenAIEmbeddingConfig:
    """OpenAI-compatible embeddings endpoint."""
    api_key: str
    model: str = "text-embedding-3-small"
    dimension: int = 0
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 30.0
    provider: Literal["openai"] = "openai"

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY is required for OpenAI embeddings")
        if not self.model:
            raise ConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAI embeddings")
        expected = resolve_openai_dimension(self.model)
        if self.dimension <= 0:
            if expected is None:
                raise ConfigError(
                    "EMBEDDING_DIMENSION must be set for OpenAI embeddings when model is unknown"
                )
            object.__setattr__(self, "dimension", expected)
        elif expected is not None and self.dimension != expected:
            raise ConfigError(f"EMBEDDING_DIMENSION should be {expected} for model {self.model}")
        _require_positive("OPENAI_TIMEOUT", self.timeout)


@dataclass(frozen=True)
class OllamaEmbeddingConfig:
    """Ollama embeddings endpoint."""
    model: str
    dimension: int
    base_url: str = "http://localhost:11434"
    timeout: float = 60.0
    provider: Literal["ollama"] = "ollama"

    def __post_init__(self) -> None:
        if not self.model:
            raise ConfigError("OLLAMA_EMBEDDING_MODEL is required for Ollama embeddings")
        _require_positive("EMBEDDING_DIMENSION", self.dimension)
        _require_positive("OLLAMA_TIMEOUT", self.timeout)


EmbeddingConfig = Union[HashEmbeddingConfig, OpenAIEmbeddingConfig, OllamaEmbeddingConfig]


@dataclass(frozen=True)
class ExtractiveLLMConfig:
    """Offline generator that extracts from the retrieved context."""
    max_chars: int = 480
    provider: Literal["extractive"] = "extractive"

    def __post_init__(self) -> None:
        _require_positive("RAG_EXTRACTIVE_MAX_CHARS", self.max_chars)


@dataclass(frozen=True)
class OpenAILLMConfig:
    """OpenAI-compatible chat completions endpoint."""
    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 60.0
    provider: Literal["openai"] = "openai"

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY is required for OpenAI provider")
        if not self.model:
            raise ConfigError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        _require_positive("OPENAI_TIMEOUT", self.timeout)


@dataclass(frozen=True)
class OllamaLLMConfig:
    """Ollama chat endpoint."""
    model: str
    base_url: str = "http://localhost:11434"
    timeout: float = 60.0
    provider: Literal["ollama"] = "ollama"

    def __post_init__(self) -> None:
        if not self.model:
            raise ConfigError("OLLAMA_MODEL is required for Ollama provider")
        _require_positive("OLLAMA_TIMEOUT", self.timeout)


LLMConfig = Union[ExtractiveLLMConfig, OpenAILLMConfig, OllamaLLMConfig]


@dataclass(frozen=True)
class PipelineConfig:
    """Retrieval, ingestion and generation knobs for RAGPipeline."""
    top_k: int = 5
    batch_size: int = 100
    ingest_concurrency: int = 1
    max_tokens: int = 512
    temperature: float = 0.1
    embed_timeout: float = 30.0
    generate_timeout: float = 60.0
    chat_history_turns: int = 6

    def __post_init__(self) -> None:
        _require_positive("RAG_TOP_K", self.top_k)
        _require_positive("RAG_EMBED_BATCH_SIZE", self.batch_size)
        _require_positive("RAG_INGEST_CONCURRENCY", self.ingest_concurrency)
        _require_positive("RAG_MAX_TOKENS", self.max_tokens)
        _require_positive("RAG_EMBED_TIMEOUT", self.embed_timeout)
        _require_positive("RAG_GENERATE_TIMEOUT", self.generate_timeout)
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigError("RAG_TEMPERATURE must be between 0 and 2")
        if self.chat_history_turns < 0:
            raise ConfigError("RAG_CHAT_HISTORY_TURNS must not be negative")
