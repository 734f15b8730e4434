"""
Lexical (keyword) search capability consumed by the hybrid engine.
The engine only relies on the ranked-hit contract; the in-memory provider
serves local deployments and tests.
"""

import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .cache import normalize_text
from .types import LexicalHit

_TOKEN = re.compile(r"\w+", re.UNICODE)


class ILexicalSearchProvider(ABC):
    """Abstract interface for keyword search."""

    @abstractmethod
    async def search(self, query: str, collection: str, limit: int) -> List[LexicalHit]:
        """Return hits ranked from 0 (best) upwards."""
        pass

    def index(self, collection: str, item_id: str, text: str, metadata: Optional[Dict[str, object]] = None) -> None:
        """Make a document searchable. External engines that index on their own ignore this."""

    def remove(self, collection: str, item_id: str) -> None:
        """Drop a document. External engines that index on their own ignore this."""


def tokenize(text: str) -> List[str]:
    return _TOKEN.findall(normalize_text(text))


class InMemoryLexicalSearch(ILexicalSearchProvider):
    """Token-overlap keyword search over documents held in memory."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Tuple[set, Dict[str, object]]]] = {}
        self._lock = threading.Lock()

    def index(self, collection: str, item_id: str, text: str, metadata: Optional[Dict[str, object]] = None) -> None:
        with self._lock:
            self._documents.setdefault(collection, {})[item_id] = (set(tokenize(text)), dict(metadata or {}))

    def remove(self, collection: str, item_id: str) -> None:
        with self._lock:
            self._documents.get(collection, {}).pop(item_id, None)

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._documents.get(collection, {}))

    async def search(self, query: str, collection: str, limit: int) -> List[LexicalHit]:
        terms = set(tokenize(query))
        if not terms or limit <= 0:
            return []

        with self._lock:
            documents = list(self._documents.get(collection, {}).items())

        scored = []
        for item_id, (tokens, metadata) in documents:
            exact = len(terms & tokens)
            prefix = sum(1 for term in terms - tokens if any(t.startswith(term) for t in tokens))
            score = exact + 0.5 * prefix
            if score > 0:
                scored.append((score, item_id, metadata))

        scored.sort(key=lambda s: (-s[0], s[1]))
        return [
            LexicalHit(id=item_id, rank=rank, metadata=dict(metadata))
            for rank, (_, item_id, metadata) in enumerate(scored[:limit])
        ]
