from __future__ import annotations

"""Embedding providers and configuration validation."""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import httpx

from ragkit.rag.config import (
    EmbeddingConfig,
    HashEmbeddingConfig,
    OllamaEmbeddingConfig,
    OpenAIEmbeddingConfig,
    resolve_openai_dimension,
)
from ragkit.rag.errors import (
    ConfigError,
    DimensionMismatch,
    EmbeddingFailure,
    ValidationError,
)
from ragkit.rag.vectors import l2_normalize, validate_vector

_TOKEN_RE = re.compile(r"[a-z0-9]+")

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Protocol for embedding capabilities: one vector per text, same order."""
    dimension: int

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return embedding vectors for the provided texts."""
        raise NotImplementedError


def validate_embeddings(
    vectors: Any, expected: int, dimension: int | None = None
) -> list[list[float]]:
    """Check a provider response has one valid vector per input."""
    if not isinstance(vectors, (list, tuple)) or len(vectors) != expected:
        count = len(vectors) if isinstance(vectors, (list, tuple)) else 0
        raise EmbeddingFailure(f"Expected {expected} embeddings, got {count}")
    try:
        return [validate_vector(vector, dimension) for vector in vectors]
    except (DimensionMismatch, ValidationError, TypeError) as exc:
        raise EmbeddingFailure(f"Invalid embedding response: {exc}", cause=exc) from exc


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = 256

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed each text using token hashing and L2 normalization."""
        return [self.embed_one(text) for text in texts]

    def embed_one(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(text.lower())
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        return validate_vector(l2_normalize(vector), self.dimension)


@dataclass
class OpenAIEmbedder:
    """Embedding provider using an OpenAI-compatible embeddings API."""
    api_key: str
    model: str
    dimension: int
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed a batch of texts with a single API call."""
        if not texts:
            return []
        payload = {"model": self.model, "input": list(texts)}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url.rstrip('/')}/embeddings",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise EmbeddingFailure("OpenAI embeddings request timed out", cause=exc, timeout=True) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingFailure(str(exc), cause=exc) from exc
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise EmbeddingFailure("OpenAI embedding response missing data")
        ordered = sorted(items, key=lambda item: item.get("index", 0))
        vectors = [item.get("embedding") for item in ordered]
        return validate_embeddings(vectors, len(texts), self.dimension)


@dataclass
class OllamaEmbedder:
    """Embedding provider using the Ollama embed API."""
    model: str
    dimension: int
    base_url: str = "http://localhost:11434"
    timeout: float = 60.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed a batch of texts with a single API call."""
        if not texts:
            return []
        payload = {"model": self.model, "input": list(texts)}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url.rstrip('/')}/api/embed", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise EmbeddingFailure("Ollama embed request timed out", cause=exc, timeout=True) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingFailure(str(exc), cause=exc) from exc
        vectors = data.get("embeddings") if isinstance(data, dict) else None
        if vectors is None:
            raise EmbeddingFailure("Ollama embedding response missing embeddings")
        return validate_embeddings(vectors, len(texts), self.dimension)


def build_embedder(config: EmbeddingConfig) -> EmbeddingProvider:
    """Factory for embedding providers based on the configured variant."""
    if isinstance(config, HashEmbeddingConfig):
        return HashEmbedder(dimension=config.dimension)
    if isinstance(config, OpenAIEmbeddingConfig):
        return OpenAIEmbedder(
            api_key=config.api_key,
            model=config.model,
            dimension=config.dimension,
            base_url=config.base_url,
            timeout=config.timeout,
        )
    if isinstance(config, OllamaEmbeddingConfig):
        return OllamaEmbedder(
            model=config.model,
            dimension=config.dimension,
            base_url=config.base_url,
            timeout=config.timeout,
        )
    raise ConfigError(f"Unsupported embedding configuration: {type(config).__name__}")


@dataclass(frozen=True)
class EmbeddingConfigReport:
    """Validation report for embedding configuration."""
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


def build_embedding_config_report(
    provider: str, model: str | None, dimension: int
) -> EmbeddingConfigReport:
    """Build a validation report for raw embedding settings."""
    normalized = provider.lower().strip() or "hash"

    def _error(detail: str, action: str, expected: int | None = None) -> EmbeddingConfigReport:
        return EmbeddingConfigReport(
            provider=normalized,
            model=model,
            configured_dimension=dimension,
            expected_dimension=expected,
            ok=False,
            status="error",
            detail=detail,
            action=action,
        )

    if normalized == "hash":
        if dimension <= 0:
            return _error(
                "EMBEDDING_DIMENSION must be greater than zero for hash embeddings.",
                "Set EMBEDDING_DIMENSION to a positive integer.",
            )
        return EmbeddingConfigReport(
            provider="hash",
            model=None,
            configured_dimension=dimension,
            expected_dimension=dimension,
            ok=True,
            status="ok",
        )

    if normalized == "openai":
        if not model:
            return _error(
                "OPENAI_EMBEDDING_MODEL is required for OpenAI embeddings.",
                "Set OPENAI_EMBEDDING_MODEL in .env.",
            )
        expected = resolve_openai_dimension(model)
        if dimension <= 0 and expected is None:
            return _error(
                "EMBEDDING_DIMENSION must be set for the configured OpenAI model.",
                "Set EMBEDDING_DIMENSION based on the OpenAI model documentation.",
            )
        if dimension > 0 and expected is not None and dimension != expected:
            return _error(
                "EMBEDDING_DIMENSION does not match the OpenAI model dimension.",
                f"Set EMBEDDING_DIMENSION to {expected}.",
                expected,
            )
        if expected is None:
            return EmbeddingConfigReport(
                provider="openai",
                model=model,
                configured_dimension=dimension,
                expected_dimension=None,
                ok=True,
                status="warning",
                detail="Model dimension cannot be auto-validated. Confirm EMBEDDING_DIMENSION manually.",
            )
        return EmbeddingConfigReport(
            provider="openai",
            model=model,
            configured_dimension=dimension,
            expected_dimension=expected,
            ok=True,
            status="ok",
        )

    if normalized == "ollama":
        if not model:
            return _error(
                "OLLAMA_EMBEDDING_MODEL is required for Ollama embeddings.",
                "Set OLLAMA_EMBEDDING_MODEL in .env.",
            )
        if dimension <= 0:
            return _error(
                "EMBEDDING_DIMENSION must be set for the configured Ollama model.",
                "Set EMBEDDING_DIMENSION based on the Ollama model card.",
            )
        return EmbeddingConfigReport(
            provider="ollama",
            model=model,
            configured_dimension=dimension,
            expected_dimension=None,
            ok=True,
            status="warning",
            detail="Model dimension cannot be auto-validated. Confirm EMBEDDING_DIMENSION manually.",
        )

    return _error(
        "Unsupported embedding provider.",
        "Set EMBEDDING_PROVIDER to hash, openai, or ollama.",
    )
