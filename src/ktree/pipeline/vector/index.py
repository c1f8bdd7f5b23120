from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from ktree.pipeline.vector.similarity import (
    VectorLike,
    cosine_similarity,
    normalize,
    top_k_similar,
)
from ktree.pipeline.vector.storage import VectorStorage

if TYPE_CHECKING:
    from ktree.pipeline.embeddings.gateway import EmbeddingGateway


class BruteForceIndex:
    """Brute-force cosine K-NN search over an in-memory snapshot.

    Sized for a few thousand vectors; there is no ANN structure.
    """

    def __init__(self, storage: VectorStorage):
        self._storage = storage
        self._corpus: list[tuple[str, np.ndarray]] = []
        self._loaded = False

    async def load(self, model: str | None = None) -> None:
        """Snapshot the stored vectors. Call again after vectors change."""
        self._corpus = await self._storage.load_all_embeddings(model)
        self._loaded = True

    def __len__(self) -> int:
        return len(self._corpus)

    def query(self, query_vector: VectorLike, k: int = 10) -> list[tuple[str, float]]:
        if not self._loaded:
            raise RuntimeError("BruteForceIndex: corpus not loaded")
        return top_k_similar(query_vector, self._corpus, k)

    async def similarity_between(self, a_id: str, b_id: str) -> float | None:
        a = await self._storage.load_embedding(a_id)
        b = await self._storage.load_embedding(b_id)
        if a is None or b is None:
            return None
        return cosine_similarity(a, b)


class VectorSimilarityService:
    """Facade for similarity lookups over stored embeddings.

    - top_k_similar_by_id(node_id, k) -> similar nodes
    - top_k_similar_by_text(text, k) -> similar nodes
    - similarity_between(a, b) -> cosine score
    """

    def __init__(self, db_path: Path, gateway: "EmbeddingGateway | None" = None):
        self.storage = VectorStorage(db_path)
        self.index = BruteForceIndex(self.storage)
        self._gateway = gateway
        self._model: str | None = None

    async def initialize(self, model: str | None = None) -> None:
        self._model = model
        await self.index.load(model)

    async def top_k_similar_by_id(
        self, node_id: str, k: int = 10
    ) -> list[tuple[str, float]]:
        query = await self.storage.load_embedding(node_id)
        if query is None:
            raise KeyError(f"No embedding found for node: {node_id}")
        return self.index.query(query, k)

    async def top_k_similar_by_text(
        self, text: str, k: int = 10
    ) -> list[tuple[str, float]]:
        if self._gateway is None:
            raise ValueError("An EmbeddingGateway is required for text queries")
        result = await self._gateway.generate_embedding(text)
        return self.index.query(normalize(result.vector), k)

    async def similarity_between(self, a_id: str, b_id: str) -> float | None:
        return await self.index.similarity_between(a_id, b_id)

    async def save_embedding(
        self, node_id: str, vector: VectorLike, model: str
    ) -> None:
        await self.storage.save_embedding(node_id, vector, model)
        await self.index.load(self._model)

    async def has_embedding(self, node_id: str) -> bool:
        return await self.storage.has_embedding(node_id)

    async def get_stats(self) -> dict:
        return await self.storage.get_stats()
