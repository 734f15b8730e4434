"""
HNSW approximate nearest-neighbour store backed by FAISS.
M, efConstruction and efSearch are configuration, exposed as-is.
"""

from typing import Dict, List, Optional, Sequence

import faiss
import numpy as np

from ..util.logging import logger
from .index import IVectorStore
from .types import IndexedItem, QueryResult, SearchFilter, cosine_to_score, matches_all


class FaissVectorStore(IVectorStore):
    """
    FAISS HNSW-backed implementation of IVectorStore.

    HNSW graphs do not support removal, so deletes and upserts of an existing
    id tombstone the old slot; tombstoned slots are skipped at query time and
    compacted by `rebuild()` once they make up `rebuild_ratio` of the index.
    """

    def __init__(self, dimension: int = 384, m: int = 16, ef_construction: int = 200,
                 ef_search: int = 50, overfetch_factor: int = 3, rebuild_ratio: float = 0.25):
        """
        Initialize FAISS vector store.

        Args:
            dimension: Dimension of the vectors
            m: HNSW connectivity (neighbours per node per layer)
            ef_construction: candidate list size while building
            ef_search: candidate list size while querying (raised to k when k is larger)
            overfetch_factor: candidate multiplier used when filters are applied
            rebuild_ratio: tombstone share that triggers compaction
        """
        super().__init__(dimension, overfetch_factor)
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.rebuild_ratio = rebuild_ratio

        self._items: Dict[str, IndexedItem] = {}
        self._normalized: Dict[str, np.ndarray] = {}
        self.id_to_label: Dict[str, int] = {}
        self.label_to_id: Dict[int, str] = {}
        self._tombstones = set()
        self._next_label = 0
        self._new_index()

    def _new_index(self) -> None:
        # Inner product over unit vectors == cosine similarity
        self._hnsw = faiss.IndexHNSWFlat(self.dimension, self.m, faiss.METRIC_INNER_PRODUCT)
        self._hnsw.hnsw.efConstruction = self.ef_construction
        self._hnsw.hnsw.efSearch = self.ef_search
        self.index = faiss.IndexIDMap2(self._hnsw)

    def _add(self, item_id: str, normalized: np.ndarray) -> None:
        label = self._next_label
        self._next_label += 1
        self.index.add_with_ids(normalized.reshape(1, -1), np.array([label], dtype=np.int64))
        self.id_to_label[item_id] = label
        self.label_to_id[label] = item_id

    def _retire(self, item_id: str) -> None:
        label = self.id_to_label.pop(item_id, None)
        if label is not None:
            self.label_to_id.pop(label, None)
            self._tombstones.add(label)

    def upsert(self, item_id: str, vector, metadata: Optional[Dict[str, object]] = None) -> None:
        normalized = self.normalize(item_id, vector)
        with self._lock:
            self._retire(item_id)
            self._add(item_id, normalized)
            self._items[item_id] = IndexedItem(
                id=item_id,
                vector=np.asarray(vector, dtype=np.float32).reshape(-1),
                metadata=dict(metadata or {}),
            )
            self._normalized[item_id] = normalized
            self._maybe_rebuild()
        logger.log_vector_operation("upsert", item_id, {"index": "hnsw"})

    def batch_upsert(self, items: Sequence[IndexedItem]) -> None:
        """Add multiple vector records to the FAISS store in one index call."""
        if not items:
            return

        prepared = [(item, self.normalize(item.id, item.vector)) for item in items]
        with self._lock:
            labels = []
            for item, normalized in prepared:
                self._retire(item.id)
                label = self._next_label
                self._next_label += 1
                labels.append(label)
                self.id_to_label[item.id] = label
                self.label_to_id[label] = item.id
                self._items[item.id] = IndexedItem(
                    id=item.id,
                    vector=np.asarray(item.vector, dtype=np.float32).reshape(-1),
                    metadata=dict(item.metadata or {}),
                )
                self._normalized[item.id] = normalized

            batch_vectors = np.vstack([normalized for _, normalized in prepared]).astype(np.float32)
            self.index.add_with_ids(batch_vectors, np.array(labels, dtype=np.int64))
            self._maybe_rebuild()

    def query(self, vector, k: int = 5, filters: Optional[Sequence[SearchFilter]] = None) -> List[QueryResult]:
        if k <= 0:
            return []

        with self._lock:
            live = len(self.id_to_label)
            if not live:
                return []

            query_vector = np.asarray(vector, dtype=np.float32).reshape(-1)
            if not np.any(query_vector):
                return []
            query_array = self.normalize("<query>", query_vector).reshape(1, -1)

            wanted = self.candidate_count(k, bool(filters))
            fetch = min(wanted + len(self._tombstones), self.index.ntotal)
            self._hnsw.hnsw.efSearch = max(self.ef_search, fetch)
            scores, labels = self.index.search(query_array, fetch)

            candidates = []
            for score, label in zip(scores[0], labels[0]):
                item_id = self.label_to_id.get(int(label))
                if item_id is None:  # tombstone or empty slot (-1)
                    continue
                candidates.append((float(score), item_id))

            candidates.sort(key=lambda c: (-c[0], c[1]))
            results = []
            for score, item_id in candidates:
                record = self._items[item_id]
                if not matches_all(filters, record.metadata):
                    continue
                results.append(QueryResult(id=item_id, score=cosine_to_score(score), metadata=dict(record.metadata)))
                if len(results) >= k:
                    break
        return results

    def delete(self, item_id: str) -> bool:
        with self._lock:
            if item_id not in self._items:
                return False
            self._retire(item_id)
            del self._items[item_id]
            del self._normalized[item_id]
            self._maybe_rebuild()
        logger.log_vector_operation("delete", item_id, {"index": "hnsw"})
        return True

    def get(self, item_id: str) -> Optional[IndexedItem]:
        with self._lock:
            return self._items.get(item_id)

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def tombstone_count(self) -> int:
        return len(self._tombstones)

    def _maybe_rebuild(self) -> None:
        total = self.index.ntotal
        if total and len(self._tombstones) / total >= self.rebuild_ratio:
            self.rebuild()

    def rebuild(self) -> None:
        """Recreate the HNSW graph from live records, dropping tombstoned slots."""
        with self._lock:
            dropped = len(self._tombstones)
            self._new_index()
            self.id_to_label.clear()
            self.label_to_id.clear()
            self._tombstones.clear()
            self._next_label = 0

            ids = sorted(self._normalized)
            if ids:
                labels = np.arange(len(ids), dtype=np.int64)
                self.index.add_with_ids(np.vstack([self._normalized[i] for i in ids]), labels)
                for label, item_id in zip(labels.tolist(), ids):
                    self.id_to_label[item_id] = label
                    self.label_to_id[label] = item_id
                self._next_label = len(ids)

        logger.log_vector_operation("rebuild", "*", {"live": len(ids), "dropped": dropped})

    def clear(self) -> None:
        """Clear all records from the FAISS store."""
        with self._lock:
            self._new_index()
            self._items.clear()
            self._normalized.clear()
            self.id_to_label.clear()
            self.label_to_id.clear()
            self._tombstones.clear()
            self._next_label = 0
