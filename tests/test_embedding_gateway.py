import asyncio

import httpx
import pytest

from ktree.pipeline.config import AppConfig, EmbeddingModelConfig, EmbeddingsConfig
from ktree.pipeline.embeddings import (
    EmbeddingCache,
    EmbeddingGateway,
    get_embedder,
)
from ktree.pipeline.embeddings.base import EmbedderBase
from ktree.pipeline.ontology.scheduling import RequestScheduler


class CountingEmbedder(EmbedderBase):
    def __init__(self, delay: float = 0.0):
        super().__init__("counting", 2, AppConfig())
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = delay

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(self.delay)
        self.in_flight -= 1
        return [float(len(text)), 1.0]


def mock_http(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)


def test_cache_lru_eviction():
    cache = EmbeddingCache(max_size=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    assert cache.get("a") == [1.0]  # "a" is now most recent
    cache.put("c", [3.0])

    assert cache.get("b") is None
    assert cache.get("a") == [1.0]
    assert cache.get("c") == [3.0]
    assert cache.stats() == {"size": 2, "hits": 3, "misses": 1, "max_size": 2}


def test_cache_key_depends_on_model():
    assert EmbeddingCache.make_key("m1", "text") != EmbeddingCache.make_key("m2", "text")
    assert EmbeddingCache.make_key("m1", "text").startswith("m1:")


def test_cache_rejects_non_positive_size():
    with pytest.raises(ValueError):
        EmbeddingCache(max_size=0)


async def test_generate_embedding_uses_cache():
    embedder = CountingEmbedder()
    gateway = EmbeddingGateway(embedder, cache=EmbeddingCache(16))

    first = await gateway.generate_embedding("hello")
    second = await gateway.generate_embedding("hello")

    assert embedder.calls == ["hello"]
    assert first.vector == second.vector == [5.0, 1.0]
    assert first.dimensions == 2
    assert first.model == "counting"
    assert gateway.get_cache_stats()["hits"] == 1

    gateway.clear_cache()
    await gateway.generate_embedding("hello")
    assert embedder.calls == ["hello", "hello"]


async def test_batch_embeddings_preserve_order():
    embedder = CountingEmbedder(delay=0.01)
    gateway = EmbeddingGateway(embedder)
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]

    results = await gateway.generate_batch_embeddings(texts, batch_size=2, delay=0)

    assert [r.text for r in results] == texts
    assert [r.vector[0] for r in results] == [1.0, 2.0, 3.0, 4.0, 5.0]
    # Fan-out inside a batch, barrier between batches
    assert embedder.max_in_flight == 2


async def test_batch_embeddings_respect_scheduler():
    embedder = CountingEmbedder(delay=0.01)
    gateway = EmbeddingGateway(embedder, scheduler=RequestScheduler(max_concurrency=1))

    await gateway.generate_batch_embeddings(["a", "b", "c"], batch_size=3, delay=0)
    assert embedder.max_in_flight == 1


async def test_batch_embeddings_invalid_batch_size():
    gateway = EmbeddingGateway(CountingEmbedder())
    with pytest.raises(ValueError):
        await gateway.generate_batch_embeddings(["a"], batch_size=0)


async def test_openai_compatible_embedder(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]
            },
        )

    mock_http(monkeypatch, handler)
    config = AppConfig(
        embeddings=EmbeddingsConfig(
            model=EmbeddingModelConfig(
                provider="vllm",
                name="test-embed",
                vector_dim=2,
                base_url="http://embed.local:8000/v1",
            )
        )
    )
    embedder = get_embedder(config)

    vectors = await embedder.embed_documents(["first", "second"])
    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["url"] == "http://embed.local:8000/v1/embeddings"
    assert seen["auth"] is None


async def test_http_errors_propagate(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "3"}, text="slow down")

    mock_http(monkeypatch, handler)
    config = AppConfig(
        embeddings=EmbeddingsConfig(
            model=EmbeddingModelConfig(provider="cohere", name="embed-v4.0")
        )
    )
    embedder = get_embedder(config)

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await embedder.embed("text")
    assert exc_info.value.response.status_code == 429
    assert "slow down" in str(exc_info.value)


async def test_gemini_embedder(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("text-embedding-004:embedContent")
        return httpx.Response(200, json={"embedding": {"values": [0.5, 0.5]}})

    mock_http(monkeypatch, handler)
    config = AppConfig(
        embeddings=EmbeddingsConfig(
            model=EmbeddingModelConfig(provider="gemini", name="gemini-pro")
        )
    )
    embedder = get_embedder(config)
    assert embedder.model == "text-embedding-004"
    assert await embedder.embed("text") == [0.5, 0.5]


def test_unsupported_embedding_provider():
    config = AppConfig(
        embeddings=EmbeddingsConfig(
            model=EmbeddingModelConfig(provider="nonexistent", name="x")
        )
    )
    with pytest.raises(ValueError, match="Unsupported embedding provider"):
        get_embedder(config)


class FlakyEmbedder(EmbedderBase):
    """Fails the first `failures` calls for each text, then succeeds."""

    def __init__(self, failures: int = 1, error: Exception | None = None):
        super().__init__("flaky", 2, AppConfig())
        self.failures = failures
        self.error = error or RuntimeError("transient")
        self.attempts: dict[str, int] = {}

    async def embed(self, text: str) -> list[float]:
        self.attempts[text] = self.attempts.get(text, 0) + 1
        if self.attempts[text] <= self.failures:
            raise self.error
        return [1.0, 0.0]


async def test_failed_embedding_is_retried():
    embedder = FlakyEmbedder(failures=1)
    gateway = EmbeddingGateway(embedder, backoff_factor=0)

    results = await gateway.generate_batch_embeddings(["a", "b"], batch_size=2, delay=0)

    assert [r.vector for r in results] == [[1.0, 0.0], [1.0, 0.0]]
    assert embedder.attempts == {"a": 2, "b": 2}


async def test_embedding_retries_exhausted():
    embedder = FlakyEmbedder(failures=5)
    gateway = EmbeddingGateway(embedder, max_attempts=3, backoff_factor=0)

    with pytest.raises(RuntimeError, match="transient"):
        await gateway.generate_embedding("a")
    assert embedder.attempts == {"a": 3}
    assert len(gateway.cache) == 0


async def test_rate_limited_embedding_penalizes_scheduler(monkeypatch):
    sleeps: list[float] = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    request = httpx.Request("POST", "http://embed.local/v1/embeddings")
    error = httpx.HTTPStatusError(
        "429",
        request=request,
        response=httpx.Response(429, headers={"Retry-After": "4"}, request=request),
    )
    scheduler = RequestScheduler()
    penalties: list[float] = []
    monkeypatch.setattr(scheduler, "penalize", penalties.append)
    gateway = EmbeddingGateway(FlakyEmbedder(failures=1, error=error), scheduler=scheduler)

    result = await gateway.generate_embedding("a")

    assert result.vector == [1.0, 0.0]
    assert penalties == [4.0]
    assert sleeps == [4.0]


class FailFastEmbedder(EmbedderBase):
    def __init__(self):
        super().__init__("fail-fast", 2, AppConfig())
        self.finished: list[str] = []

    async def embed(self, text: str) -> list[float]:
        if text == "bad":
            raise ValueError("bad input")
        await asyncio.sleep(0.5)
        self.finished.append(text)
        return [1.0, 0.0]


async def test_failing_batch_cancels_siblings():
    embedder = FailFastEmbedder()
    gateway = EmbeddingGateway(embedder, max_attempts=1)

    with pytest.raises(ValueError, match="bad input"):
        await gateway.generate_batch_embeddings(
            ["slow-1", "bad", "slow-2"], batch_size=3, delay=0
        )
    assert embedder.finished == []
