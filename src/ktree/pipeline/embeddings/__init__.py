from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.embeddings.base import EmbedderBase
from ktree.pipeline.embeddings.gateway import (
    EmbeddingCache,
    EmbeddingGateway,
    EmbeddingResult,
)

__all__ = [
    "EmbedderBase",
    "EmbeddingCache",
    "EmbeddingGateway",
    "EmbeddingResult",
    "get_embedder",
]


def get_embedder(config: AppConfig = Config) -> EmbedderBase:
    """
    Factory function to get the appropriate embedder based on the configuration.

    Args:
        config: Configuration to use. Defaults to global Config.

    Returns:
        An embedder instance configured according to the config.
    """
    embedding_model = config.embeddings.model
    provider = embedding_model.provider

    if provider == "openai":
        from ktree.pipeline.embeddings.openai import Embedder as OpenAIEmbedder

        return OpenAIEmbedder(
            embedding_model.name,
            embedding_model.vector_dim,
            config,
            base_url=embedding_model.base_url,
            api_key=config.providers.api_keys.openai,
        )

    if provider in ("ollama", "vllm", "lm_studio"):
        from ktree.pipeline.embeddings.openai import Embedder as OpenAIEmbedder

        base_url = embedding_model.base_url or getattr(config.providers, provider).base_url
        return OpenAIEmbedder(
            embedding_model.name, embedding_model.vector_dim, config, base_url=base_url
        )

    if provider == "gemini":
        from ktree.pipeline.embeddings.gemini import Embedder as GeminiEmbedder

        return GeminiEmbedder(embedding_model.name, embedding_model.vector_dim, config)

    if provider == "cohere":
        from ktree.pipeline.embeddings.cohere import Embedder as CohereEmbedder

        return CohereEmbedder(embedding_model.name, embedding_model.vector_dim, config)

    raise ValueError(f"Unsupported embedding provider: {provider}")
