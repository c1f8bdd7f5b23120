import httpx

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.embeddings.base import EmbedderBase, raise_for_status

OPENAI_BASE_URL = "https://api.openai.com"


class Embedder(EmbedderBase):
    """Embedder for OpenAI and OpenAI-compatible `POST /v1/embeddings` servers.

    Used for OpenAI itself as well as Ollama, vLLM and LM Studio.
    """

    def __init__(
        self,
        model: str,
        vector_dim: int,
        config: AppConfig = Config,
        base_url: str | None = None,
        api_key: str | None = None,
    ):
        super().__init__(model, vector_dim, config)
        # Accept base_url with or without a trailing /v1
        cleaned = (base_url or OPENAI_BASE_URL).rstrip("/")
        if cleaned.endswith("/v1"):
            cleaned = cleaned[: -len("/v1")]
        self._base_url = cleaned
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    async def _post(self, inputs: list[str]) -> list[list[float]]:
        payload = {
            "model": self._model,
            "input": inputs,
            "encoding_format": "float",
        }
        async with httpx.AsyncClient(timeout=self._config.embeddings.timeout) as client:
            resp = await client.post(
                f"{self._base_url}/v1/embeddings",
                json=payload,
                headers=self._headers(),
            )
            raise_for_status(resp)
            data = resp.json()

        rows = sorted(data.get("data") or [], key=lambda r: r.get("index", 0))
        embeddings = [list(r["embedding"]) for r in rows if r.get("embedding")]
        if len(embeddings) != len(inputs):
            raise ValueError(
                f"Expected {len(inputs)} embeddings, got {len(embeddings)}"
            )
        return embeddings

    async def embed(self, text: str) -> list[float]:
        return (await self._post([text]))[0]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._post(texts)
