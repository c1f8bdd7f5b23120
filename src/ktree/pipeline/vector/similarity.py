"""Low-level vector utilities.

Stored vectors are float32 and unit-normalized (L2 norm 1), so cosine
similarity reduces to a dot product. Similarity range is [-1, 1].
"""

from collections.abc import Iterable, Sequence
from typing import TypeAlias

import numpy as np

VectorLike: TypeAlias = Sequence[float] | np.ndarray


def as_vector(vector: VectorLike) -> np.ndarray:
    return np.asarray(vector, dtype=np.float32)


def normalize(vector: VectorLike) -> np.ndarray:
    """Scale a vector to unit length. Zero vectors are returned unchanged."""
    arr = as_vector(vector)
    magnitude = float(np.linalg.norm(arr))
    if magnitude == 0.0:
        return arr
    return (arr / magnitude).astype(np.float32)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity of two unit-length vectors (their dot product)."""
    va, vb = as_vector(a), as_vector(b)
    if va.shape != vb.shape:
        raise ValueError(
            f"Vector dimension mismatch: got {va.shape[0]} vs {vb.shape[0]}"
        )
    return float(np.dot(va, vb))


def cosine_similarity_raw(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity for vectors of arbitrary length.

    Returns 0.0 when either vector is all zeros.
    """
    va, vb = as_vector(a), as_vector(b)
    if va.shape != vb.shape:
        raise ValueError(
            f"Vector dimension mismatch: got {va.shape[0]} vs {vb.shape[0]}"
        )
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def cosine_distance(a: VectorLike, b: VectorLike) -> float:
    """1 - cosine similarity, smaller is closer."""
    return 1.0 - cosine_similarity(a, b)


def top_k_similar(
    query: VectorLike,
    corpus: Iterable[tuple[str, VectorLike]],
    k: int = 10,
) -> list[tuple[str, float]]:
    """Brute-force top-K nearest neighbours over unit-normalized vectors.

    Args:
        query: Query vector
        corpus: (id, vector) pairs
        k: Number of results to keep

    Returns:
        (id, score) pairs ordered by descending similarity
    """
    items = list(corpus)
    if not items or k <= 0:
        return []

    ids = [item_id for item_id, _ in items]
    matrix = np.vstack([as_vector(vector) for _, vector in items])
    q = as_vector(query)
    if matrix.shape[1] != q.shape[0]:
        raise ValueError(
            f"Vector dimension mismatch: got {q.shape[0]} vs {matrix.shape[1]}"
        )

    scores = matrix @ q
    # Stable sort keeps corpus order among equal scores
    order = np.argsort(-scores, kind="stable")[:k]
    return [(ids[i], float(scores[i])) for i in order]
