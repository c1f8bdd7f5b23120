from pathlib import Path

import lancedb
import numpy as np
from lancedb.pydantic import LanceModel

from ktree.pipeline.vector.similarity import VectorLike, normalize

TABLE_NAME = "embeddings"


class EmbeddingRecord(LanceModel):
    """Persisted vector for a knowledge-tree node (file, directory, topic).

    id: primary key, identical to node_id unless a chunk id is given
    node_id: id of the associated node
    model: embedding model name
    dim: dimensionality of the vector
    vector: unit-norm float32 array stored as raw bytes
    """

    id: str
    node_id: str
    model: str
    dim: int
    vector: bytes


def _quote(value: str) -> str:
    return value.replace("'", "''")


def serialize_vector(vector: VectorLike) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def deserialize_vector(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype=np.float32).copy()


class VectorStorage:
    """Provider-agnostic persistence layer for embeddings."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db = lancedb.connect(db_path)
        if TABLE_NAME in self.db.table_names():
            self.table = self.db.open_table(TABLE_NAME)
        else:
            self.table = self.db.create_table(TABLE_NAME, schema=EmbeddingRecord)

    async def save_embedding(
        self,
        node_id: str,
        vector: VectorLike,
        model: str,
        embedding_id: str | None = None,
    ) -> None:
        """Upsert an embedding. The vector is normalized to unit length first."""
        normalized = normalize(vector)
        record_id = embedding_id or node_id
        record = EmbeddingRecord(
            id=record_id,
            node_id=node_id,
            model=model,
            dim=int(normalized.shape[0]),
            vector=serialize_vector(normalized),
        )
        self.table.delete(f"id = '{_quote(record_id)}'")
        self.table.add([record])

    async def load_embedding(self, node_id: str) -> np.ndarray | None:
        results = list(
            self.table.search()
            .where(f"node_id = '{_quote(node_id)}'")
            .limit(1)
            .to_pydantic(EmbeddingRecord)
        )
        if not results:
            return None
        return deserialize_vector(results[0].vector)

    async def load_all_embeddings(
        self, model: str | None = None
    ) -> list[tuple[str, np.ndarray]]:
        """Load every stored (node_id, vector) pair, optionally for one model."""
        rows = self.table.to_arrow().to_pylist()
        return [
            (row["node_id"], deserialize_vector(row["vector"]))
            for row in rows
            if model is None or row["model"] == model
        ]

    async def has_embedding(self, node_id: str) -> bool:
        return await self.load_embedding(node_id) is not None

    async def delete_embedding(self, node_id: str) -> None:
        self.table.delete(f"node_id = '{_quote(node_id)}'")

    async def count(self) -> int:
        return self.table.count_rows()

    async def get_stats(self) -> dict:
        """Return the total number of embeddings and a per-model breakdown."""
        models: dict[str, int] = {}
        for row in self.table.to_arrow().select(["model"]).to_pylist():
            models[row["model"]] = models.get(row["model"], 0) + 1
        return {"total": sum(models.values()), "models": models}
