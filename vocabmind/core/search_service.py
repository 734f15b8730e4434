"""
Hybrid search over vocabulary collections.
Vector (ANN) and lexical retrieval run concurrently and are merged with
Reciprocal Rank Fusion; a failed path degrades the response instead of failing it.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import COLLECTIONS, FeatureFlags, GraphConfig, SearchConfig
from .errors import InvalidQuery, TotalFailure
from .resilience import describe_error
from ..graph.store import GraphStore, NodeKind
from ..util.logging import logger
from ..vector.embeddings import EmbeddingsService
from ..vector.fusion import reciprocal_rank_fusion
from ..vector.index import IVectorStore
from ..vector.lexical import ILexicalSearchProvider
from ..vector.types import (
    IndexDocument,
    IndexedItem,
    LexicalHit,
    QueryResult,
    SearchFilter,
    SearchResponse,
    SearchResult,
    SearchSource,
    SearchStrategy,
    matches_all,
)

COLLECTION_NODE_KINDS = {
    "vocabulary": NodeKind.VOCABULARY,
    "images": NodeKind.IMAGE,
    "descriptions": NodeKind.DESCRIPTION,
}

# Share of the vector-path timeout given to the embedding call; the rest covers the index query
EMBEDDING_BUDGET_SHARE = 0.8


@dataclass
class SearchOptions:
    limit: Optional[int] = None
    threshold: Optional[float] = None
    filters: Sequence[SearchFilter] = field(default_factory=tuple)
    enable_fusion: bool = True


class HybridSearchEngine:
    """
    Orchestrates embeddings, the per-collection vector stores and the lexical provider.

    The optional graph is only touched when the knowledge-graph flag is on:
    newly indexed items are linked to sufficiently similar existing items.
    """

    def __init__(self, embeddings: EmbeddingsService, stores: Dict[str, IVectorStore],
                 lexical: ILexicalSearchProvider, config: SearchConfig, features: FeatureFlags,
                 graph: Optional[GraphStore] = None, graph_config: Optional[GraphConfig] = None,
                 clock: Callable[[], float] = time.perf_counter):
        self.embeddings = embeddings
        self.stores = stores
        self.lexical = lexical
        self.config = config
        self.features = features
        self.graph = graph
        self.graph_config = graph_config or GraphConfig()
        self._clock = clock

    def store_for(self, collection: str) -> IVectorStore:
        store = self.stores.get(collection)
        if store is None:
            raise InvalidQuery("collection", f"must be one of: {sorted(self.stores)}")
        return store

    def resolve_strategy(self, options: SearchOptions) -> SearchStrategy:
        """Pick the retrieval strategy once per request."""
        if not self.features.semantic_search:
            return SearchStrategy.LEXICAL_ONLY
        if options.enable_fusion and self.features.hybrid_ranking:
            return SearchStrategy.HYBRID
        return SearchStrategy.VECTOR_ONLY

    def _validate(self, query: str, collection: str, options: SearchOptions) -> Tuple[int, float]:
        if not isinstance(query, str) or not query.strip():
            raise InvalidQuery("query", "query cannot be empty")
        if collection not in COLLECTIONS:
            raise InvalidQuery("collection", f"must be one of: {list(COLLECTIONS)}")
        self.store_for(collection)

        limit = self.config.default_limit if options.limit is None else options.limit
        if not isinstance(limit, int) or limit < 1 or limit > self.config.max_limit:
            raise InvalidQuery("limit", f"must be between 1 and {self.config.max_limit}")

        threshold = self.config.similarity_threshold if options.threshold is None else options.threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidQuery("threshold", "must be between 0 and 1")

        for search_filter in options.filters:
            if not isinstance(search_filter, SearchFilter):
                raise InvalidQuery("filters", "filters must be SearchFilter instances")
        return limit, threshold

    async def search(self, query: str, collection: str = "vocabulary", k: Optional[int] = None,
                     options: Optional[SearchOptions] = None) -> SearchResponse:
        """
        Run one search request.

        Raises:
            InvalidQuery: malformed input (never retried)
            TotalFailure: every attempted retrieval path failed
        """
        options = options or SearchOptions()
        if k is not None:
            options = SearchOptions(limit=k, threshold=options.threshold,
                                    filters=options.filters, enable_fusion=options.enable_fusion)
        start = self._clock()
        limit, threshold = self._validate(query, collection, options)
        filters = list(options.filters)
        strategy = self.resolve_strategy(options)

        vector_results: Optional[List[QueryResult]] = None
        lexical_results: Optional[List[LexicalHit]] = None
        vector_error: Optional[BaseException] = None
        lexical_error: Optional[BaseException] = None

        if strategy == SearchStrategy.LEXICAL_ONLY:
            lexical_results, lexical_error = _unpack(await _capture(
                self._run_lexical(query, collection, limit, filters)))
        else:
            vector_outcome, lexical_outcome = await asyncio.gather(
                self._run_vector(query, collection, limit, threshold, filters),
                self._run_lexical(query, collection, limit, filters),
                return_exceptions=True,
            )
            vector_results, vector_error = _unpack(vector_outcome)
            lexical_results, lexical_error = _unpack(lexical_outcome)
            if strategy == SearchStrategy.VECTOR_ONLY and vector_error is None:
                # lexical hits only stand in for a failed vector path here
                lexical_results, lexical_error = None, None

        if vector_results is None and lexical_results is None:
            logger.log_operation("search", "failed", {
                "collection": collection,
                "vector_error": repr(vector_error)[:100],
                "lexical_error": repr(lexical_error)[:100],
            })
            raise TotalFailure(vector_error, lexical_error)

        if vector_error is not None:
            logger.log_search_degraded(collection, "vector", describe_error(vector_error))
        if lexical_error is not None:
            logger.log_search_degraded(collection, "lexical", describe_error(lexical_error))

        if vector_results is not None and lexical_results is not None:
            results = reciprocal_rank_fusion(
                vector_results, lexical_results,
                k=self.config.rrf_k,
                vector_weight=self.config.vector_weight,
                lexical_weight=self.config.lexical_weight,
                limit=limit,
            )
            source = results[0].source if results else SearchSource.HYBRID
        elif vector_results is not None:
            results = [
                SearchResult(id=r.id, score=r.score, source=SearchSource.VECTOR,
                             metadata=r.metadata, vector_rank=rank)
                for rank, r in enumerate(vector_results[:limit])
            ]
            source = SearchSource.VECTOR
        else:
            results = [
                SearchResult(id=h.id, score=1.0 / (h.rank + 1), source=SearchSource.LEXICAL,
                             metadata=dict(h.metadata), lexical_rank=h.rank)
                for h in lexical_results[:limit]
            ]
            source = SearchSource.LEXICAL

        # A hybrid request answered from a single path is reported as degraded
        degraded = (vector_error is not None or lexical_error is not None
                    or (strategy == SearchStrategy.HYBRID and bool(results) and source != SearchSource.HYBRID))

        duration_ms = (self._clock() - start) * 1000
        logger.log_search(query, collection, source.value, len(results), duration_ms,
                          {"strategy": strategy.value})
        return SearchResponse(
            results=results,
            source=source,
            total_results=len(results),
            processing_time_ms=duration_ms,
            strategy=strategy,
            degraded=degraded,
        )

    async def _run_vector(self, query: str, collection: str, limit: int, threshold: float,
                          filters: List[SearchFilter]) -> List[QueryResult]:
        return await asyncio.wait_for(
            self._vector_path(query, collection, limit, threshold, filters),
            timeout=self.config.vector_timeout,
        )

    async def _vector_path(self, query: str, collection: str, limit: int, threshold: float,
                           filters: List[SearchFilter]) -> List[QueryResult]:
        # the embedding call must time out inside the path deadline
        budget = self.config.vector_timeout * EMBEDDING_BUDGET_SHARE
        vector = await self.embeddings.embed_query(query, budget=budget)
        store = self.store_for(collection)
        candidates = await asyncio.to_thread(store.query, vector, limit, filters or None)
        # Threshold applies before fusion so weak vector matches never outrank lexical ones
        return [c for c in candidates if c.score >= threshold]

    async def _run_lexical(self, query: str, collection: str, limit: int,
                           filters: List[SearchFilter]) -> List[LexicalHit]:
        return await asyncio.wait_for(
            self._lexical_path(query, collection, limit, filters),
            timeout=self.config.lexical_timeout,
        )

    async def _lexical_path(self, query: str, collection: str, limit: int,
                            filters: List[SearchFilter]) -> List[LexicalHit]:
        fetch = limit * self.store_for(collection).overfetch_factor if filters else limit
        hits = await self.lexical.search(query, collection, fetch)
        hits = sorted(hits, key=lambda h: (h.rank, h.id))
        kept = [h for h in hits if matches_all(filters, h.metadata)][:limit]
        return [LexicalHit(id=h.id, rank=rank, metadata=dict(h.metadata)) for rank, h in enumerate(kept)]

    async def index_items(self, collection: str, documents: Sequence[IndexDocument]) -> int:
        """Embed and upsert documents; returns how many were indexed."""
        store = self.store_for(collection)
        if not documents:
            return 0

        vectors = await self.embeddings.embed_texts([d.text for d in documents])
        items = [
            IndexedItem(id=d.id, vector=np.asarray(v, dtype=np.float32), metadata={**d.metadata, "text": d.text})
            for d, v in zip(documents, vectors)
        ]
        await asyncio.to_thread(store.batch_upsert, items)

        for document in documents:
            self.lexical.index(collection, document.id, document.text, document.metadata)

        if self.features.knowledge_graph and self.graph is not None:
            kind = COLLECTION_NODE_KINDS[collection]
            for item in items:
                self.graph.add_node(item.id, kind, {"text": item.metadata["text"]})
            for item in items:
                neighbours = store.query(item.vector, self.graph_config.max_related + 1)
                self.graph.connect_similar(
                    item.id,
                    [(n.id, n.score) for n in neighbours],
                    self.graph_config.auto_connect_threshold,
                )

        logger.log_operation("index.items", "success", {"collection": collection, "count": len(items)})
        return len(items)

    async def remove_item(self, collection: str, item_id: str) -> bool:
        store = self.store_for(collection)
        removed = await asyncio.to_thread(store.delete, item_id)
        self.lexical.remove(collection, item_id)
        if self.features.knowledge_graph and self.graph is not None:
            self.graph.remove_node(item_id)
        return removed


async def _capture(awaitable):
    try:
        return await awaitable
    except Exception as e:
        return e


def _unpack(outcome):
    """Split a path outcome into (results, error); client errors are re-raised."""
    if isinstance(outcome, InvalidQuery):
        raise outcome
    if isinstance(outcome, BaseException):
        if not isinstance(outcome, Exception):
            raise outcome
        return None, outcome
    return outcome, None
