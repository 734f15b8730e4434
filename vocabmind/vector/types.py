"""
Record types for the vector layer: indexed items, query hits, search results,
cached embeddings and metadata filters.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import InvalidQuery


@dataclass
class IndexedItem:
    """Represents a vector record with metadata."""

    id: str
    """Unique identifier, one-to-one with a domain entity (e.g. a vocabulary item)"""

    vector: Optional[np.ndarray]
    """The vector representation of the content"""

    metadata: Dict[str, object] = field(default_factory=dict)
    """Scalar metadata used for filtering and returned with results"""


@dataclass
class QueryResult:
    """Represents a search result from vector store."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Cosine similarity clamped to 0-1 (1.0 = identical direction)"""

    metadata: Dict[str, object]
    """Metadata associated with the matched record"""


@dataclass
class IndexDocument:
    """A domain entity to embed and index: its id, its text and filterable metadata."""

    id: str
    text: str
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class EmbeddingVector:
    """A cached embedding, identified by (source_text_hash, model). Never mutated."""

    id: str
    source_text_hash: str
    vector: Tuple[float, ...]
    model: str
    created_at: float
    expires_at: float


@dataclass(frozen=True)
class LexicalHit:
    """One result from the external keyword search capability."""

    id: str
    rank: int
    metadata: Dict[str, object] = field(default_factory=dict)


class SearchSource(str, Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"


class SearchStrategy(str, Enum):
    VECTOR_ONLY = "vector_only"
    LEXICAL_ONLY = "lexical_only"
    HYBRID = "hybrid"


@dataclass
class SearchResult:
    id: str
    score: float
    source: SearchSource
    metadata: Dict[str, object] = field(default_factory=dict)
    vector_rank: Optional[int] = None
    lexical_rank: Optional[int] = None


@dataclass
class SearchResponse:
    results: List[SearchResult]
    source: SearchSource
    total_results: int
    processing_time_ms: float
    strategy: SearchStrategy
    degraded: bool = False


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"


@dataclass(frozen=True)
class SearchFilter:
    """A single metadata predicate: `metadata[field] <operator> value`."""

    field: str
    operator: FilterOperator
    value: Any

    @classmethod
    def build(cls, field: str, operator: str, value: Any) -> "SearchFilter":
        if not field or not str(field).strip():
            raise InvalidQuery("filters.field", "field cannot be empty")
        try:
            op = FilterOperator(operator)
        except ValueError:
            raise InvalidQuery("filters.operator", f"unsupported operator: {operator}")
        if op == FilterOperator.IN and not isinstance(value, (list, tuple, set)):
            raise InvalidQuery("filters.value", "'in' requires a list value")
        return cls(field=field, operator=op, value=value)

    def matches(self, metadata: Dict[str, object]) -> bool:
        if self.field not in metadata:
            return self.operator == FilterOperator.NE

        actual = metadata[self.field]
        op = self.operator
        try:
            if op == FilterOperator.EQ:
                return actual == self.value
            if op == FilterOperator.NE:
                return actual != self.value
            if op == FilterOperator.GT:
                return actual > self.value
            if op == FilterOperator.GTE:
                return actual >= self.value
            if op == FilterOperator.LT:
                return actual < self.value
            if op == FilterOperator.LTE:
                return actual <= self.value
            if op == FilterOperator.IN:
                return actual in self.value
            if op == FilterOperator.CONTAINS:
                if isinstance(actual, str):
                    return str(self.value) in actual
                return self.value in actual
        except TypeError:
            # incomparable types (e.g. str vs int) never match
            return False
        return False


def matches_all(filters: Optional[Sequence[SearchFilter]], metadata: Dict[str, object]) -> bool:
    return all(f.matches(metadata) for f in filters or ())


def cosine_to_score(similarity: float) -> float:
    """Clamp a cosine similarity into the 0-1 score range."""
    return float(min(1.0, max(0.0, similarity)))
