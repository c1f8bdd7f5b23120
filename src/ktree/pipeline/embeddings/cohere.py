import httpx

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.embeddings.base import EmbedderBase, raise_for_status

COHERE_EMBED_URL = "https://api.cohere.com/v2/embed"


class Embedder(EmbedderBase):
    """Cohere embedder using the v2 embed endpoint."""

    def __init__(self, model: str, vector_dim: int, config: AppConfig = Config):
        super().__init__(model, vector_dim, config)

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_documents([text]))[0]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        payload = {
            "model": self._model,
            "texts": texts,
            "input_type": "search_document",
            "embedding_types": ["float"],
        }
        headers = {"Authorization": f"Bearer {self._config.providers.api_keys.cohere}"}
        async with httpx.AsyncClient(timeout=self._config.embeddings.timeout) as client:
            resp = await client.post(COHERE_EMBED_URL, json=payload, headers=headers)
            raise_for_status(resp)
            data = resp.json()

        embeddings = data.get("embeddings") or {}
        return [list(v) for v in embeddings.get("float", [])]
