"""
Content-addressed embedding cache.
Keys combine a hash of the normalized text with the model identifier; entries expire by TTL.
"""

import hashlib
import re
import threading
import time
import unicodedata
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ..util.logging import logger
from .types import EmbeddingVector

_WHITESPACE = re.compile(r"\s+")

BatchCompute = Callable[[List[str]], Awaitable[Sequence[Sequence[float]]]]


def normalize_text(text: str) -> str:
    """Canonical form used for cache addressing: NFKC, trimmed, lowercased, single spaces."""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFKC", text).strip().lower())


def text_hash(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


class ICacheBackend(ABC):
    """Storage behind the embedding cache. Implementations may raise; the cache absorbs it."""

    @abstractmethod
    def get(self, key: str) -> Optional[EmbeddingVector]:
        pass

    @abstractmethod
    def set(self, key: str, entry: EmbeddingVector) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def size(self) -> int:
        pass


class InMemoryCacheBackend(ICacheBackend):
    """LRU-bounded dictionary. Last write wins on the same key."""

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, EmbeddingVector]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[EmbeddingVector]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def set(self, key: str, entry: EmbeddingVector) -> None:
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class EmbeddingCache:
    """
    Maps (normalized text, model) to an embedding vector.

    The cache never fails a caller: backend read errors are treated as misses
    and write errors are logged and dropped.
    """

    def __init__(self, model: str, ttl_seconds: int = 86400, backend: Optional[ICacheBackend] = None,
                 clock: Callable[[], float] = time.time):
        self.model = model
        self.ttl_seconds = ttl_seconds
        self.backend = backend if backend is not None else InMemoryCacheBackend()
        self._clock = clock
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def cache_key(self, text: str, model: Optional[str] = None) -> str:
        return f"{model or self.model}:{text_hash(text)}"

    def _lookup(self, key: str) -> Optional[List[float]]:
        try:
            entry = self.backend.get(key)
        except Exception as e:
            logger.log_cache_failure("read", e)
            return None

        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            try:
                self.backend.delete(key)
            except Exception as e:
                logger.log_cache_failure("evict", e)
            return None
        return list(entry.vector)

    def _store(self, key: str, text: str, vector: Sequence[float], model: Optional[str]) -> None:
        now = self._clock()
        entry = EmbeddingVector(
            id=str(uuid.uuid4()),
            source_text_hash=text_hash(text),
            vector=tuple(float(v) for v in vector),
            model=model or self.model,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        try:
            self.backend.set(key, entry)
        except Exception as e:
            logger.log_cache_failure("write", e)

    def _count(self, hits: int, misses: int) -> None:
        with self._stats_lock:
            self.hits += hits
            self.misses += misses

    def get(self, text: str, model: Optional[str] = None) -> Optional[List[float]]:
        vector = self._lookup(self.cache_key(text, model))
        self._count(int(vector is not None), int(vector is None))
        return vector

    def put(self, text: str, vector: Sequence[float], model: Optional[str] = None) -> None:
        self._store(self.cache_key(text, model), text, vector, model)

    async def get_or_compute(self, texts: Sequence[str], compute: BatchCompute,
                             model: Optional[str] = None) -> List[List[float]]:
        """
        Resolve every text to a vector, computing only what the cache lacks.

        Texts that normalize to the same key are computed once. The output is
        in the same positional order as `texts` whatever the hit/miss pattern.
        """
        results: List[Optional[List[float]]] = [None] * len(texts)
        pending: "OrderedDict[str, List[int]]" = OrderedDict()
        to_compute: List[str] = []
        hits = 0

        for position, text in enumerate(texts):
            key = self.cache_key(text, model)
            if key in pending:
                pending[key].append(position)
                continue
            cached = self._lookup(key)
            if cached is not None:
                results[position] = cached
                hits += 1
                continue
            pending[key] = [position]
            to_compute.append(text)

        self._count(hits, len(texts) - hits)

        if to_compute:
            computed = await compute(to_compute)
            if len(computed) != len(to_compute):
                raise ValueError(
                    f"compute returned {len(computed)} vectors for {len(to_compute)} texts"
                )
            for (key, positions), text, vector in zip(pending.items(), to_compute, computed):
                as_list = [float(v) for v in vector]
                for position in positions:
                    results[position] = list(as_list)
                self._store(key, text, as_list, model)

        logger.log_cache_event("get_or_compute", hits, len(to_compute), {"requested": len(texts)})
        return results

    def stats(self) -> Dict[str, int]:
        try:
            size = self.backend.size()
        except Exception as e:
            logger.log_cache_failure("stats", e)
            size = -1
        with self._stats_lock:
            return {"hits": self.hits, "misses": self.misses, "size": size}

    def clear(self) -> None:
        try:
            self.backend.clear()
        except Exception as e:
            logger.log_cache_failure("clear", e)
