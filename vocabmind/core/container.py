"""
Composition root: builds every component from one AppConfig and owns the
start/stop lifecycle of background work.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import COLLECTIONS, AppConfig, load_config
from .errors import ConfigurationError
from .resilience import ResilienceLayer
from .search_service import HybridSearchEngine
from ..graph.store import GraphStore
from ..learning.predictor import GuardedPredictor, RuleBasedPredictor
from ..learning.repository import CardRepository
from ..learning.scheduler import SpacedRepetitionScheduler
from ..learning.sync import InteractionSyncQueue
from ..util.logging import logger
from ..vector.cache import EmbeddingCache, InMemoryCacheBackend
from ..vector.embeddings import (
    DeterministicHashEmbedding,
    EmbeddingsService,
    IEmbeddingProvider,
    SentenceTransformerEmbedding,
)
from ..vector.faiss_store import FaissVectorStore
from ..vector.index import IVectorStore, SimpleInMemoryVectorStore
from ..vector.lexical import ILexicalSearchProvider, InMemoryLexicalSearch


def build_vector_store(config: AppConfig) -> IVectorStore:
    index = config.index
    if index.provider == "hnsw":
        return FaissVectorStore(
            dimension=index.dimensions,
            m=index.hnsw_m,
            ef_construction=index.ef_construction,
            ef_search=index.ef_search,
            overfetch_factor=index.overfetch_factor,
        )
    if index.provider == "memory":
        return SimpleInMemoryVectorStore(dimension=index.dimensions, overfetch_factor=index.overfetch_factor)
    raise ConfigurationError([f"index.provider must be 'hnsw' or 'memory' (got '{index.provider}')"])


def build_embedding_provider(config: AppConfig) -> IEmbeddingProvider:
    embedding = config.embedding
    if embedding.provider == "hash":
        return DeterministicHashEmbedding(dimension=config.index.dimensions)
    if embedding.provider == "sentence-transformers":
        return SentenceTransformerEmbedding(embedding.model_name)
    raise ConfigurationError([
        f"embedding.provider must be 'hash' or 'sentence-transformers' (got '{embedding.provider}')"
    ])


@dataclass
class ServiceContainer:
    config: AppConfig
    stores: Dict[str, IVectorStore]
    cache: EmbeddingCache
    embeddings: EmbeddingsService
    lexical: ILexicalSearchProvider
    graph: GraphStore
    engine: HybridSearchEngine
    scheduler: SpacedRepetitionScheduler
    predictor: Optional[GuardedPredictor] = None
    sync_queue: Optional[InteractionSyncQueue] = None

    @classmethod
    def build(cls, config: Optional[AppConfig] = None,
              embedding_provider: Optional[IEmbeddingProvider] = None,
              lexical: Optional[ILexicalSearchProvider] = None) -> "ServiceContainer":
        """
        Wire components for `config` (loaded from the environment when omitted).

        Feature flags are resolved here, once: the graph is handed to the search
        engine and scheduler only when the knowledge-graph flag is on, and the
        predictor exists only with adaptive scheduling.
        """
        config = config or load_config()
        features = config.features
        logger.set_level(config.log_level)

        stores = {collection: build_vector_store(config) for collection in COLLECTIONS}
        provider = embedding_provider or build_embedding_provider(config)
        cache = EmbeddingCache(
            model=provider.model_name,
            ttl_seconds=config.cache.embedding_ttl,
            backend=InMemoryCacheBackend(max_entries=config.cache.max_entries),
        )
        embeddings = EmbeddingsService(
            provider,
            cache,
            ResilienceLayer("embedding", config.resilience, timeout=config.embedding.timeout),
            dimension=config.index.dimensions,
            batch_size=config.embedding.batch_size,
            max_concurrency=config.embedding.max_concurrency,
        )
        lexical = lexical or InMemoryLexicalSearch()
        graph = GraphStore(
            max_depth=config.graph.max_depth,
            edge_weight_decay=config.graph.edge_weight_decay,
            min_edge_weight=config.graph.min_edge_weight,
        )
        linked_graph = graph if features.knowledge_graph else None

        engine = HybridSearchEngine(
            embeddings, stores, lexical, config.search, features,
            graph=linked_graph, graph_config=config.graph,
        )

        predictor = None
        sync_queue = None
        if features.adaptive_scheduling:
            predictor = GuardedPredictor(
                RuleBasedPredictor(graph=linked_graph),
                ResilienceLayer(
                    "predictor", config.resilience,
                    timeout=config.scheduler.prediction_timeout,
                    budget=config.scheduler.prediction_timeout,
                ),
            )
            sync_queue = InteractionSyncQueue(
                predictor,
                flush_interval=config.sync.flush_interval,
                max_size=config.sync.max_queue_size,
            )

        scheduler = SpacedRepetitionScheduler(
            config.scheduler,
            repository=CardRepository(),
            predictor=predictor,
            graph=linked_graph,
            graph_config=config.graph,
            sync_queue=sync_queue,
        )

        logger.log_operation("container.build", "success", {
            "environment": config.environment,
            "index_provider": config.index.provider,
            "embedding_provider": config.embedding.provider,
            "features": {
                "semantic_search": features.semantic_search,
                "knowledge_graph": features.knowledge_graph,
                "adaptive_scheduling": features.adaptive_scheduling,
                "hybrid_ranking": features.hybrid_ranking,
            },
        })

        return cls(
            config=config,
            stores=stores,
            cache=cache,
            embeddings=embeddings,
            lexical=lexical,
            graph=graph,
            engine=engine,
            scheduler=scheduler,
            predictor=predictor,
            sync_queue=sync_queue,
        )

    async def startup(self) -> None:
        if self.sync_queue is not None and not self.sync_queue.running:
            self.sync_queue.start()
        logger.log_operation("container.startup", "success", {"environment": self.config.environment})

    async def shutdown(self) -> None:
        if self.sync_queue is not None:
            await self.sync_queue.stop()
        logger.log_operation("container.shutdown", "success", {"environment": self.config.environment})

    def health(self) -> Dict[str, Any]:
        """Breaker states, index sizes, cache stats and queue depth."""
        circuits = {"embedding": self.embeddings.resilience.snapshot().state.value}
        if self.predictor is not None:
            circuits["predictor"] = self.predictor.resilience.snapshot().state.value

        embedding_ok = circuits["embedding"] != "open"
        return {
            "status": "healthy" if embedding_ok else "degraded",
            "environment": self.config.environment,
            "circuits": circuits,
            "index_sizes": {name: store.count() for name, store in self.stores.items()},
            "cache": self.cache.stats(),
            "graph": {"nodes": self.graph.node_count(), "edges": self.graph.edge_count()},
            "sync_queue_depth": self.sync_queue.pending() if self.sync_queue is not None else 0,
        }
