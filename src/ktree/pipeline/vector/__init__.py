from ktree.pipeline.vector.index import BruteForceIndex, VectorSimilarityService
from ktree.pipeline.vector.similarity import (
    cosine_distance,
    cosine_similarity,
    cosine_similarity_raw,
    normalize,
    top_k_similar,
)
from ktree.pipeline.vector.storage import VectorStorage

__all__ = [
    "BruteForceIndex",
    "VectorSimilarityService",
    "VectorStorage",
    "cosine_distance",
    "cosine_similarity",
    "cosine_similarity_raw",
    "normalize",
    "top_k_similar",
]
