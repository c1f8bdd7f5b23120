import httpx

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.embeddings.base import EmbedderBase, raise_for_status

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "text-embedding-004"


class Embedder(EmbedderBase):
    """Google Gemini embedder (`embedContent` / `batchEmbedContents`)."""

    def __init__(self, model: str, vector_dim: int, config: AppConfig = Config):
        # Only embedding models are accepted by the endpoint
        if "embedding" not in model:
            model = DEFAULT_GEMINI_MODEL
        super().__init__(model, vector_dim, config)

    def _params(self) -> dict[str, str]:
        return {"key": self._config.providers.api_keys.gemini}

    async def embed(self, text: str) -> list[float]:
        payload = {
            "content": {"parts": [{"text": text}]},
            "taskType": "SEMANTIC_SIMILARITY",
        }
        async with httpx.AsyncClient(timeout=self._config.embeddings.timeout) as client:
            resp = await client.post(
                f"{GEMINI_BASE_URL}/models/{self._model}:embedContent",
                params=self._params(),
                json=payload,
            )
            raise_for_status(resp)
            data = resp.json()

        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise ValueError(f"Invalid response format from Gemini embedding API: {data}")
        return list(values)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        payload = {
            "requests": [
                {
                    "model": f"models/{self._model}",
                    "content": {"parts": [{"text": text}]},
                    "taskType": "SEMANTIC_SIMILARITY",
                }
                for text in texts
            ]
        }
        async with httpx.AsyncClient(timeout=self._config.embeddings.timeout) as client:
            resp = await client.post(
                f"{GEMINI_BASE_URL}/models/{self._model}:batchEmbedContents",
                params=self._params(),
                json=payload,
            )
            raise_for_status(resp)
            data = resp.json()

        return [list(e["values"]) for e in data.get("embeddings", [])]
