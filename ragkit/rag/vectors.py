from __future__ import annotations

"""Vector validation and similarity math."""

import math
from typing import Sequence

from ragkit.rag.errors import DimensionMismatch, ValidationError


def validate_vector(vector: Sequence[float], dimension: int | None = None) -> list[float]:
    """Validate an embedding vector and return it as a list of floats."""
    if dimension is not None and len(vector) != dimension:
        raise DimensionMismatch(expected=dimension, actual=len(vector))
    cleaned: list[float] = []
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise ValidationError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the dot product of two equal-length vectors."""
    if len(a) != len(b):
        raise DimensionMismatch(expected=len(a), actual=len(b))
    return sum(x * y for x, y in zip(a, b))


def norm(vector: Sequence[float]) -> float:
    """Return the Euclidean magnitude of a vector."""
    return math.sqrt(sum(value * value for value in vector))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity; zero-magnitude vectors score 0.0."""
    product = dot(a, b)
    norm_a = norm(a)
    norm_b = norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return max(-1.0, min(1.0, product / (norm_a * norm_b)))


def l2_normalize(vector: Sequence[float]) -> list[float]:
    """Normalize vector magnitude to 1.0."""
    magnitude = norm(vector)
    if magnitude == 0.0:
        return list(vector)
    return [value / magnitude for value in vector]
