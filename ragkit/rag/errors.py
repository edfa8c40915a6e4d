from __future__ import annotations

"""Typed errors raised by the store, index, retriever and pipeline."""

from typing import Any


class RAGError(RuntimeError):
    """Base class for all ragkit errors.

    ``stage`` names the pipeline stage the error surfaced in, when known.
    """
    stage: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error into a JSON-friendly payload."""
        payload: dict[str, Any] = {"error": type(self).__name__, "detail": str(self)}
        if self.stage is not None:
            payload["stage"] = self.stage
        return payload


class ValidationError(RAGError):
    """Raised when input has the wrong shape, such as an empty query."""
    pass


class ConfigError(RAGError):
    """Raised when provider or pipeline configuration is invalid."""
    pass


class StoreError(RAGError):
    """Raised when a document store rejects an operation."""
    pass


class DimensionMismatch(StoreError):
    """Raised when a vector length disagrees with the established dimension."""

    def __init__(self, expected: int, actual: int, doc_id: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.doc_id = doc_id
        where = f" for document {doc_id}" if doc_id else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({"expected": self.expected, "actual": self.actual})
        return payload


class MissingEmbedding(StoreError):
    """Raised when a document reaches the store without an embedding."""

    def __init__(self, doc_id: str) -> None:
        self.doc_id = doc_id
        super().__init__(f"Document {doc_id} has no embedding")


class EmptyStore(StoreError):
    """Raised when a caller requires results from a store with no documents."""
    pass


class NotFound(RAGError):
    """Raised when a document or collection id does not exist."""

    def __init__(self, key: str, kind: str = "document") -> None:
        self.key = key
        self.kind = kind
        super().__init__(f"{kind.capitalize()} not found: {key}")


class CapabilityFailure(RAGError):
    """Raised when an injected embedding or generation call fails."""

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        cause: BaseException | None = None,
        timeout: bool = False,
    ) -> None:
        self.stage = stage
        self.cause = cause
        self.timeout = timeout
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["timeout"] = self.timeout
        if self.cause is not None:
            payload["cause"] = type(self.cause).__name__
        return payload


class EmbeddingFailure(CapabilityFailure):
    """Raised when the embedding capability errors, times out or misbehaves."""
    pass


class GenerationFailure(CapabilityFailure):
    """Raised when the generation capability errors or times out."""
    pass


class IngestionFailure(RAGError):
    """Raised when an ingestion batch fails after earlier batches committed."""

    def __init__(self, batch_index: int, cause: BaseException, committed: int = 0) -> None:
        self.batch_index = batch_index
        self.cause = cause
        self.committed = committed
        super().__init__(f"Ingestion failed at batch {batch_index}: {cause}")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "batch_index": self.batch_index,
                "committed": self.committed,
                "cause": type(self.cause).__name__,
            }
        )
        return payload
