"""
Vector layer: embeddings, embedding cache, ANN index, lexical capability and rank fusion.
"""

# Package initialization for vector module
from .index import IVectorStore, SimpleInMemoryVectorStore
from .faiss_store import FaissVectorStore
from .types import (
    IndexedItem,
    QueryResult,
    LexicalHit,
    SearchFilter,
    SearchResult,
    SearchResponse,
    SearchSource,
    SearchStrategy,
)
from .cache import EmbeddingCache, InMemoryCacheBackend
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding, EmbeddingsService
from .lexical import ILexicalSearchProvider, InMemoryLexicalSearch
from .fusion import reciprocal_rank_fusion

__all__ = [
    'IVectorStore',
    'SimpleInMemoryVectorStore',
    'FaissVectorStore',
    'IndexedItem',
    'QueryResult',
    'LexicalHit',
    'SearchFilter',
    'SearchResult',
    'SearchResponse',
    'SearchSource',
    'SearchStrategy',
    'EmbeddingCache',
    'InMemoryCacheBackend',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'EmbeddingsService',
    'ILexicalSearchProvider',
    'InMemoryLexicalSearch',
    'reciprocal_rank_fusion',
]
