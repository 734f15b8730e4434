"""
Vector index interface and an exact in-memory cosine implementation.
The index is the sole mutator of IndexedItem records (upsert by id, delete by id).
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..core.errors import IndexInconsistency
from ..util.logging import logger
from .types import IndexedItem, QueryResult, SearchFilter, cosine_to_score, matches_all


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    def __init__(self, dimension: int, overfetch_factor: int = 3):
        self.dimension = dimension
        self.overfetch_factor = overfetch_factor
        self._lock = threading.RLock()

    @abstractmethod
    def upsert(self, item_id: str, vector, metadata: Optional[Dict[str, object]] = None) -> None:
        """Insert or replace the vector and metadata stored under `item_id`."""
        pass

    @abstractmethod
    def query(self, vector, k: int = 5, filters: Optional[Sequence[SearchFilter]] = None) -> List[QueryResult]:
        """Return up to k records ranked by descending cosine similarity."""
        pass

    @abstractmethod
    def delete(self, item_id: str) -> bool:
        """Delete a record by ID. Returns False when it was not present."""
        pass

    @abstractmethod
    def get(self, item_id: str) -> Optional[IndexedItem]:
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the store."""
        pass

    def batch_upsert(self, items: Sequence[IndexedItem]) -> None:
        """Upsert several records. The batch is validated before anything is written."""
        for item in items:
            self.normalize(item.id, item.vector)
        with self._lock:
            for item in items:
                self.upsert(item.id, item.vector, item.metadata)

    def normalize(self, item_id: str, vector) -> np.ndarray:
        """Validate dimensionality and return a unit-length float32 copy."""
        array = np.asarray(vector, dtype=np.float32).reshape(-1)
        if array.shape[0] != self.dimension:
            logger.log_data_quality("dimension_mismatch", item_id, {
                "expected": self.dimension,
                "actual": int(array.shape[0]),
            })
            raise IndexInconsistency(item_id, self.dimension, int(array.shape[0]))

        norm = np.linalg.norm(array)
        if norm == 0 or not np.isfinite(norm):
            logger.log_data_quality("zero_vector", item_id)
            raise ValueError(f"Vector for {item_id} has zero or non-finite norm")
        return array / norm

    def candidate_count(self, k: int, filtered: bool) -> int:
        """How many ANN candidates to pull so that post-filtering can still fill k."""
        return k * self.overfetch_factor if filtered else k


class SimpleInMemoryVectorStore(IVectorStore):
    """Simple in-memory implementation of IVectorStore using exact cosine similarity."""

    def __init__(self, dimension: int = 384, overfetch_factor: int = 3):
        super().__init__(dimension, overfetch_factor)
        self._vectors: Dict[str, IndexedItem] = {}  # record_id -> IndexedItem
        self._index: Dict[str, np.ndarray] = {}     # record_id -> normalized_vector

    def upsert(self, item_id: str, vector, metadata: Optional[Dict[str, object]] = None) -> None:
        normalized = self.normalize(item_id, vector)
        with self._lock:
            self._vectors[item_id] = IndexedItem(
                id=item_id,
                vector=np.asarray(vector, dtype=np.float32).reshape(-1),
                metadata=dict(metadata or {}),
            )
            self._index[item_id] = normalized
        logger.log_vector_operation("upsert", item_id)

    def query(self, vector, k: int = 5, filters: Optional[Sequence[SearchFilter]] = None) -> List[QueryResult]:
        if k <= 0:
            return []

        with self._lock:
            if not self._index:
                return []

            query_vector = np.asarray(vector, dtype=np.float32).reshape(-1)
            if query_vector.shape[0] != self.dimension:
                raise IndexInconsistency("<query>", self.dimension, int(query_vector.shape[0]))
            norm = np.linalg.norm(query_vector)
            if norm == 0:
                # Return empty results if query vector is zero
                return []
            normalized_query = query_vector / norm

            ids = list(self._index.keys())
            matrix = np.vstack([self._index[i] for i in ids])
            similarities = matrix @ normalized_query

            # Sort by similarity (descending), id ascending for stable ties
            order = sorted(range(len(ids)), key=lambda i: (-float(similarities[i]), ids[i]))

            results = []
            for i in order:
                record = self._vectors[ids[i]]
                if not matches_all(filters, record.metadata):
                    continue
                results.append(QueryResult(
                    id=record.id,
                    score=cosine_to_score(float(similarities[i])),
                    metadata=dict(record.metadata),
                ))
                if len(results) >= k:
                    break

        return results

    def delete(self, item_id: str) -> bool:
        with self._lock:
            existed = self._vectors.pop(item_id, None) is not None
            self._index.pop(item_id, None)
        if existed:
            logger.log_vector_operation("delete", item_id)
        return existed

    def get(self, item_id: str) -> Optional[IndexedItem]:
        with self._lock:
            return self._vectors.get(item_id)

    def count(self) -> int:
        with self._lock:
            return len(self._vectors)

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._index.clear()
