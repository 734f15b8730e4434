"""
Embedding providers and the guarded embeddings service.
Providers turn text into fixed-dimension vectors; the service adds caching,
chunked batching with bounded concurrency, and the resilience layer.
"""

import asyncio
import functools
import hashlib
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from ..core.errors import IndexInconsistency, InvalidQuery, ProviderError, ProviderErrorKind
from ..core.resilience import ResilienceLayer
from ..util.logging import logger
from .cache import EmbeddingCache, normalize_text

_TOKEN = re.compile(r"\w+", re.UNICODE)


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    model_name: str

    @abstractmethod
    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        """Generate one embedding vector per text, in input order."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Each token is hashed into a signed bucket (feature hashing), so texts that
    share words point in similar directions without any model dependency.
    """

    def __init__(self, dimension: int = 384, model_name: str = "hash-v1"):
        self.dimension = dimension
        self.model_name = model_name

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector using hash function."""
        tokens = _TOKEN.findall(normalize_text(text))
        if not tokens:
            raise ProviderError("cannot embed empty text", ProviderErrorKind.INVALID_INPUT)

        vector = np.zeros(self.dimension, dtype=np.float64)
        for token in tokens:
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = np.linalg.norm(vector)
        return (vector / norm).tolist()

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Encoding runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        embeddings = self.model.encode(texts, convert_to_numpy=True, normalize_embeddings=True)
        return embeddings.tolist()

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        if any(not text.strip() for text in texts):
            raise ProviderError("cannot embed empty text", ProviderErrorKind.INVALID_INPUT)
        try:
            return await asyncio.to_thread(self._encode, texts)
        except (OSError, RuntimeError) as e:
            raise ProviderError(f"sentence-transformers failed: {e}", ProviderErrorKind.UNAVAILABLE)

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class EmbeddingsService:
    """
    Cache-checked, batched, guarded access to an embedding provider.

    Uncached texts are split into chunks of `batch_size`; at most
    `max_concurrency` chunk calls are outstanding at once. Every chunk call
    goes through the resilience layer, so callers see ProviderUnavailable
    (never a raw provider exception) when the provider is down.
    """

    def __init__(self, provider: IEmbeddingProvider, cache: EmbeddingCache, resilience: ResilienceLayer,
                 dimension: int, batch_size: int = 100, max_concurrency: int = 5):
        self.provider = provider
        self.cache = cache
        self.resilience = resilience
        self.dimension = dimension
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    async def embed_texts(self, texts: Sequence[str], budget: Optional[float] = None) -> List[List[float]]:
        """
        Embed multiple texts into vectors.

        Args:
            texts: List of text strings to embed
            budget: Seconds allowed for each provider chunk call, retries included;
                defaults to the resilience layer's own budget

        Returns:
            One vector per text, in input order
        """
        for position, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise InvalidQuery(f"texts[{position}]", "text cannot be empty")
        if not texts:
            return []
        return await self.cache.get_or_compute(
            list(texts), functools.partial(self._embed_uncached, budget=budget), model=self.model_name
        )

    async def embed_query(self, text: str, budget: Optional[float] = None) -> List[float]:
        vectors = await self.embed_texts([text], budget=budget)
        return vectors[0]

    async def _embed_uncached(self, texts: List[str], budget: Optional[float] = None) -> List[List[float]]:
        chunks = [texts[i:i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*(self._embed_chunk(chunk, semaphore, budget) for chunk in chunks))

        vectors: List[List[float]] = []
        for chunk_vectors in results:
            vectors.extend(chunk_vectors)
        return vectors

    async def _embed_chunk(self, chunk: List[str], semaphore: asyncio.Semaphore,
                           budget: Optional[float] = None) -> List[List[float]]:
        async with semaphore:
            try:
                vectors = await self.resilience.execute(
                    lambda: self.provider.embed(chunk, self.model_name), budget=budget
                )
            except ProviderError as e:
                if e.kind == ProviderErrorKind.INVALID_INPUT:
                    raise InvalidQuery("texts", str(e))
                raise

        if len(vectors) != len(chunk):
            logger.log_data_quality("vector_count_mismatch", "<batch>", {
                "expected": len(chunk),
                "actual": len(vectors),
            })
            raise IndexInconsistency("<batch>", len(chunk), len(vectors))

        for text, vector in zip(chunk, vectors):
            if len(vector) != self.dimension:
                logger.log_data_quality("dimension_mismatch", text[:30], {
                    "expected": self.dimension,
                    "actual": len(vector),
                    "model": self.model_name,
                })
                raise IndexInconsistency(text[:30], self.dimension, len(vector))
        return [list(v) for v in vectors]
