from __future__ import annotations

"""Vector math tests."""

import pytest

from ragkit.rag.errors import DimensionMismatch, ValidationError
from ragkit.rag.vectors import cosine_similarity, l2_normalize, validate_vector


def test_cosine_of_vector_with_itself_is_one() -> None:
    assert cosine_similarity([0.3, 0.4, 1.2], [0.3, 0.4, 1.2]) == pytest.approx(1.0)


def test_zero_magnitude_scores_zero() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [0.0, 0.0]) == 0.0


def test_scores_stay_within_bounds() -> None:
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_mismatched_lengths_raise() -> None:
    with pytest.raises(DimensionMismatch):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_validate_vector_rejects_non_finite_values() -> None:
    with pytest.raises(ValidationError):
        validate_vector([1.0, float("nan")])
    with pytest.raises(ValidationError):
        validate_vector([1.0, float("inf")])
    with pytest.raises(DimensionMismatch):
        validate_vector([1.0], dimension=2)


def test_l2_normalize_keeps_zero_vector() -> None:
    assert l2_normalize([0.0, 0.0]) == [0.0, 0.0]
    assert l2_normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])
