"""
Vector Math
===========

Pure numpy helpers shared by every analytics component.

All functions are stateless. Inputs may be any sequence of numbers; outputs
are plain floats or tuple vectors so they can be stored in frozen contracts.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Sequence, Tuple, Union
import numpy as np

from ..contracts.base import DimensionMismatch, EmptyInput, InvalidParameter
from ..contracts.world import Vector


VectorLike = Sequence[float]


@dataclass(frozen=True)
class Neighbor:
    """A candidate and its cosine distance from a query vector."""
    candidate_id: str
    distance: float

    @property
    def alignment(self) -> float:
        return 1.0 - self.distance


def to_array(vector: VectorLike) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def to_vector(array: np.ndarray) -> Vector:
    return tuple(float(v) for v in array)


def _check_dimensions(a: np.ndarray, b: np.ndarray, operation: str):
    if a.shape != b.shape:
        raise DimensionMismatch(
            f"Cannot compare vectors of dimension {a.shape[0]} and {b.shape[0]}",
            operation=operation
        )


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity in [-1, 1].

    A zero-norm vector has no direction, so its similarity to anything is 0.
    """
    va, vb = to_array(a), to_array(b)
    _check_dimensions(va, vb, "cosine_similarity")

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def cosine_distance(a: VectorLike, b: VectorLike) -> float:
    """1 - cosine similarity, in [0, 2]."""
    va, vb = to_array(a), to_array(b)
    _check_dimensions(va, vb, "cosine_distance")

    # Identical inputs are exactly zero apart, zero vectors included
    if np.array_equal(va, vb):
        return 0.0

    return 1.0 - cosine_similarity(va, vb)


def centroid(vectors: Iterable[VectorLike]) -> Vector:
    """Element-wise mean of one or more vectors of equal dimension."""
    arrays = [to_array(v) for v in vectors]
    if not arrays:
        raise EmptyInput("centroid requires at least one vector", operation="centroid")

    first = arrays[0]
    for other in arrays[1:]:
        _check_dimensions(first, other, "centroid")

    return to_vector(np.mean(np.stack(arrays), axis=0))


def nearest_k(
    query: VectorLike,
    candidates: Union[Mapping[str, VectorLike], Iterable[Tuple[str, VectorLike]]],
    k: int
) -> List[Neighbor]:
    """
    The k candidates closest to ``query`` by cosine distance.

    Ordered by ascending distance, ties broken by candidate id.
    """
    if k < 0:
        raise InvalidParameter(f"k must be non-negative, got {k}", operation="nearest_k")

    items = candidates.items() if isinstance(candidates, Mapping) else candidates
    neighbors = [
        Neighbor(candidate_id=candidate_id, distance=cosine_distance(query, vector))
        for candidate_id, vector in items
    ]
    neighbors.sort(key=lambda n: (n.distance, n.candidate_id))
    return neighbors[:k]


def aligned(
    direction: VectorLike,
    candidates: Union[Mapping[str, VectorLike], Iterable[Tuple[str, VectorLike]]],
    limit: int
) -> List[Neighbor]:
    """
    Candidates pointing most nearly along ``direction``.

    A zero direction aligns with nothing. Candidates of another dimension
    cannot be compared and are skipped.
    """
    if limit < 0:
        raise InvalidParameter(f"limit must be non-negative, got {limit}", operation="aligned")

    unit = normalize(direction)
    if not any(unit):
        return []

    items = candidates.items() if isinstance(candidates, Mapping) else candidates
    comparable = [(candidate_id, vector) for candidate_id, vector in items if len(vector) == len(unit)]
    return nearest_k(unit, comparable, limit)


def subtract(a: VectorLike, b: VectorLike) -> Vector:
    """a - b."""
    va, vb = to_array(a), to_array(b)
    _check_dimensions(va, vb, "subtract")
    return to_vector(va - vb)


def normalize(vector: VectorLike) -> Vector:
    """Unit-length copy; a zero vector is returned unchanged."""
    array = to_array(vector)
    norm = float(np.linalg.norm(array))
    if norm == 0.0:
        return to_vector(array)
    return to_vector(array / norm)


def blend(base: VectorLike, toward: VectorLike, factor: float) -> Vector:
    """Move ``base`` toward ``toward`` by ``factor`` (0 keeps base, 1 replaces it)."""
    if not 0.0 <= factor <= 1.0:
        raise InvalidParameter(f"blend factor must be within [0, 1], got {factor}", operation="blend")

    va, vb = to_array(base), to_array(toward)
    _check_dimensions(va, vb, "blend")
    return to_vector((1.0 - factor) * va + factor * vb)
