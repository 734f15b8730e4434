"""
Reciprocal Rank Fusion of vector and lexical result lists.
"""

import math
from typing import Dict, List, Optional, Sequence

from .types import LexicalHit, QueryResult, SearchResult, SearchSource


def rrf_score(rank: int, k: int = 60, weight: float = 1.0) -> float:
    """Rank-based contribution of one list entry (rank is 0-indexed)."""
    return weight / (k + rank + 1)


def _first_ranks(ids: Sequence[str]) -> Dict[str, int]:
    ranks: Dict[str, int] = {}
    for rank, item_id in enumerate(ids):
        ranks.setdefault(item_id, rank)
    return ranks


def reciprocal_rank_fusion(vector_results: Sequence[QueryResult], lexical_results: Sequence[LexicalHit],
                           k: int = 60, vector_weight: float = 1.2, lexical_weight: float = 1.0,
                           limit: Optional[int] = None) -> List[SearchResult]:
    """
    Merge two ranked lists into one.

    Each entry scores weight / (k + rank + 1); scores for the same id are
    summed across lists. Ties break on vector rank, then lexical rank, then
    id, so identical inputs always produce identical output.
    """
    lexical_sorted = sorted(lexical_results, key=lambda hit: (hit.rank, hit.id))
    vector_ranks = _first_ranks([r.id for r in vector_results])
    lexical_ranks = _first_ranks([h.id for h in lexical_sorted])

    metadata: Dict[str, dict] = {}
    for hit in lexical_sorted:
        metadata.setdefault(hit.id, dict(hit.metadata))
    for result in vector_results:
        # vector metadata comes from the index and wins over the lexical copy
        metadata[result.id] = {**metadata.get(result.id, {}), **result.metadata}

    if vector_ranks and lexical_ranks:
        source = SearchSource.HYBRID
    elif vector_ranks:
        source = SearchSource.VECTOR
    else:
        source = SearchSource.LEXICAL

    fused = []
    for item_id in set(vector_ranks) | set(lexical_ranks):
        score = 0.0
        v_rank = vector_ranks.get(item_id)
        l_rank = lexical_ranks.get(item_id)
        if v_rank is not None:
            score += rrf_score(v_rank, k, vector_weight)
        if l_rank is not None:
            score += rrf_score(l_rank, k, lexical_weight)
        fused.append(SearchResult(
            id=item_id,
            score=score,
            source=source,
            metadata=metadata.get(item_id, {}),
            vector_rank=v_rank,
            lexical_rank=l_rank,
        ))

    fused.sort(key=lambda r: (
        -r.score,
        r.vector_rank if r.vector_rank is not None else math.inf,
        r.lexical_rank if r.lexical_rank is not None else math.inf,
        r.id,
    ))
    return fused[:limit] if limit is not None else fused
