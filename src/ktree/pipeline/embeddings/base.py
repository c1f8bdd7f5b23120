import httpx

from ktree.pipeline.config import AppConfig, Config


class EmbedderBase:
    """Base interface for text embedders.

    Implementations return raw provider vectors; normalization happens in the
    vector store.
    """

    _model: str
    _vector_dim: int
    _config: AppConfig

    def __init__(self, model: str, vector_dim: int, config: AppConfig = Config):
        self._model = model
        self._vector_dim = vector_dim
        self._config = config

    @property
    def model(self) -> str:
        return self._model

    @property
    def vector_dim(self) -> int:
        return self._vector_dim

    async def embed(self, text: str) -> list[float]:
        raise NotImplementedError(
            "Embedder is an abstract class. Please implement the embed method in a subclass."
        )

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts. Subclasses may override with a batch endpoint."""
        return [await self.embed(text) for text in texts]


def raise_for_status(resp: httpx.Response) -> None:
    """Raise HTTPStatusError including the response body for context."""
    try:
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise httpx.HTTPStatusError(
            f"{e}. Response body: {resp.text[:2000]}",
            request=e.request,
            response=e.response,
        ) from e
