import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING

from pydantic import BaseModel

from ktree.pipeline.embeddings.base import EmbedderBase

if TYPE_CHECKING:
    from ktree.pipeline.ontology.scheduling import RequestScheduler

logger = logging.getLogger(__name__)


class EmbeddingResult(BaseModel):
    text: str
    vector: list[float]
    dimensions: int
    model: str


class EmbeddingCache:
    """Bounded LRU cache of embedding vectors keyed by model and text hash."""

    def __init__(self, max_size: int = 4096):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(model: str, text: str) -> str:
        return f"{model}:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"

    def get(self, key: str) -> list[float] | None:
        vector = self._entries.get(key)
        if vector is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return vector

    def put(self, key: str, vector: list[float]) -> None:
        self._entries[key] = vector
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "max_size": self.max_size,
        }


class EmbeddingGateway:
    """Single entry point for embedding text, with caching and batching.

    The embedder is chosen once (see `get_embedder`); the cache is injected so
    its lifetime and bound are owned by the caller. Failed embedder calls are
    retried with the same backoff policy as LLM calls.
    """

    def __init__(
        self,
        embedder: EmbedderBase,
        model: str | None = None,
        cache: EmbeddingCache | None = None,
        scheduler: "RequestScheduler | None" = None,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
    ):
        self.embedder = embedder
        self.model = model or embedder.model
        self.cache = cache if cache is not None else EmbeddingCache()
        self.scheduler = scheduler
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor

    async def _call_embedder(self, text: str) -> list[float]:
        from ktree.pipeline.ontology.scheduling import retry_with_backoff

        return await retry_with_backoff(
            lambda: self.embedder.embed(text),
            "Embedding",
            max_attempts=self.max_attempts,
            backoff_factor=self.backoff_factor,
            scheduler=self.scheduler,
        )

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Embed one text, consulting the cache first."""
        key = EmbeddingCache.make_key(self.model, text)
        vector = self.cache.get(key)
        if vector is None:
            vector = await self._call_embedder(text)
            self.cache.put(key, vector)
        return EmbeddingResult(
            text=text, vector=vector, dimensions=len(vector), model=self.model
        )

    async def generate_batch_embeddings(
        self,
        texts: list[str],
        batch_size: int = 100,
        delay: float = 0.1,
    ) -> list[EmbeddingResult]:
        """Embed texts in batches; texts within a batch are embedded concurrently.

        Results are returned in input order. A pause of `delay` seconds
        separates consecutive batches. When one text fails, the rest of its
        batch is cancelled and that error is raised.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        results: list[EmbeddingResult] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            try:
                async with asyncio.TaskGroup() as tg:
                    tasks = [tg.create_task(self.generate_embedding(t)) for t in batch]
            except ExceptionGroup as eg:
                raise eg.exceptions[0]
            results.extend(task.result() for task in tasks)
            if start + batch_size < len(texts) and delay > 0:
                await asyncio.sleep(delay)
        logger.debug("Embedded %d texts", len(results))
        return results

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> dict[str, int]:
        return self.cache.stats()
