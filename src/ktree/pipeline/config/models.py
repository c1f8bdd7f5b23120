import os
from pathlib import Path

from pydantic import BaseModel, Field

from ktree.pipeline.utils import get_default_data_dir


class ModelConfig(BaseModel):
    """Configuration for a language model.

    Attributes:
        provider: Model provider (anthropic, openai, gemini, ollama, etc.)
        name: Model name/identifier
        base_url: Optional base URL for OpenAI-compatible servers (vLLM, LM Studio, etc.)
        temperature: Sampling temperature (0.0 to 1.0+)
        max_tokens: Maximum tokens to generate
    """

    provider: str = "anthropic"
    name: str = "claude-sonnet-4-0"
    base_url: str | None = None

    temperature: float | None = 0.1
    max_tokens: int | None = None


class EmbeddingModelConfig(BaseModel):
    """Configuration for an embedding model.

    Attributes:
        provider: Model provider (openai, ollama, vllm, lm_studio, gemini, cohere)
        name: Model name/identifier
        vector_dim: Vector dimensions produced by the model
        base_url: Optional base URL for OpenAI-compatible servers (vLLM, LM Studio, etc.)
    """

    provider: str = "openai"
    name: str = "text-embedding-3-small"
    vector_dim: int = 1536
    base_url: str | None = None


class StorageConfig(BaseModel):
    data_dir: Path = Field(default_factory=get_default_data_dir)


class EmbeddingsConfig(BaseModel):
    model: EmbeddingModelConfig = Field(default_factory=EmbeddingModelConfig)
    cache_size: int = 4096
    timeout: int = 60


class OntologyConfig(BaseModel):
    """Tuning for the ontology construction pipeline.

    Attributes:
        model: Model used for domain discovery, subtopic labeling and assignment
        similarity_threshold: Minimum file/domain cosine similarity for membership
        embedding_batch_size: Files embedded concurrently per batch
        embedding_batch_delay: Pause between embedding batches (seconds)
        domain_delay: Pause between per-domain LLM calls (seconds)
        max_attempts: Attempts per LLM call before giving up
        backoff_factor: Retry delay is backoff_factor * 2**attempt seconds
        max_prompt_files: Files shown to the subtopic labeler per domain
        agent_retries: Output-schema retries pydantic-ai performs inside one call
    """

    model: ModelConfig = Field(default_factory=ModelConfig)
    similarity_threshold: float = 0.3
    embedding_batch_size: int = 10
    embedding_batch_delay: float = 0.1
    domain_delay: float = 0.5
    max_attempts: int = 3
    backoff_factor: float = 1.0
    max_prompt_files: int = 30
    min_domains: int = 2
    max_domains: int = 10
    max_subtopics: int = 10
    max_concurrency: int = 1
    agent_retries: int = 1
    persist_embeddings: bool = True


class ValidationConfig(BaseModel):
    """Acceptance thresholds checked after a build."""

    min_coverage: int = 100
    max_total_seconds: float = 30 * 60
    max_llm_calls: int = 100
    min_cluster_similarity: float = 0.1


class OllamaConfig(BaseModel):
    base_url: str = Field(
        default_factory=lambda: os.environ.get(
            "OLLAMA_BASE_URL", "http://localhost:11434"
        )
    )


class VLLMConfig(BaseModel):
    base_url: str = "http://localhost:8000"


class LMStudioConfig(BaseModel):
    base_url: str = "http://localhost:1234"


class APIKeysConfig(BaseModel):
    openai: str = Field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    gemini: str = Field(
        default_factory=lambda: os.environ.get(
            "GEMINI_API_KEY", os.environ.get("GOOGLE_API_KEY", "")
        )
    )
    cohere: str = Field(default_factory=lambda: os.environ.get("COHERE_API_KEY", ""))


class ProvidersConfig(BaseModel):
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    vllm: VLLMConfig = Field(default_factory=VLLMConfig)
    lm_studio: LMStudioConfig = Field(default_factory=LMStudioConfig)
    api_keys: APIKeysConfig = Field(default_factory=APIKeysConfig)


class AppConfig(BaseModel):
    environment: str = "production"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    ontology: OntologyConfig = Field(default_factory=OntologyConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
