"""
Directed, weighted relationship graph over vocabulary items.
Supports bounded breadth-first discovery of related items with per-hop decay.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.errors import GraphIntegrityError
from ..util.logging import logger


class NodeKind(str, Enum):
    VOCABULARY = "vocabulary"
    IMAGE = "image"
    DESCRIPTION = "description"
    CATEGORY = "category"
    USER = "user"


class EdgeKind(str, Enum):
    SYNONYM = "synonym"
    ANTONYM = "antonym"
    TRANSLATION = "translation"
    RELATED = "related"
    SIMILAR = "similar"
    CONFUSED_WITH = "confused_with"
    PART_OF = "part_of"


@dataclass
class GraphNode:
    id: str
    kind: NodeKind
    properties: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class GraphEdge:
    source_id: str
    target_id: str
    kind: EdgeKind
    weight: float


@dataclass(frozen=True)
class RelatedNode:
    node: GraphNode
    effective_weight: float
    depth: int


class GraphStore:
    """
    In-memory relationship graph.

    Invariants: edge endpoints reference existing nodes, weights lie in
    [0, 1], and self-loops are rejected. Edges are keyed by
    (source, target, kind); re-adding one replaces its weight.
    """

    def __init__(self, max_depth: int = 3, edge_weight_decay: float = 0.8, min_edge_weight: float = 0.3):
        self.max_depth = max_depth
        self.edge_weight_decay = edge_weight_decay
        self.min_edge_weight = min_edge_weight
        self._nodes: Dict[str, GraphNode] = {}
        self._out: Dict[str, Dict[Tuple[str, EdgeKind], GraphEdge]] = {}
        self._lock = threading.RLock()

    def add_node(self, node_id: str, kind: NodeKind = NodeKind.VOCABULARY,
                 properties: Optional[Dict[str, object]] = None) -> GraphNode:
        """Add a node, or merge properties into the existing node with this id."""
        if not node_id:
            raise GraphIntegrityError("node id cannot be empty")
        with self._lock:
            existing = self._nodes.get(node_id)
            if existing is not None:
                existing.properties.update(properties or {})
                return existing
            node = GraphNode(id=node_id, kind=NodeKind(kind), properties=dict(properties or {}))
            self._nodes[node_id] = node
            self._out[node_id] = {}
            return node

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        with self._lock:
            return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._nodes

    def remove_node(self, node_id: str) -> bool:
        """Remove a node with its outgoing and incoming edges."""
        with self._lock:
            if node_id not in self._nodes:
                return False
            del self._nodes[node_id]
            del self._out[node_id]
            for edges in self._out.values():
                for key in [key for key in edges if key[0] == node_id]:
                    del edges[key]
            return True

    def add_edge(self, source_id: str, target_id: str, kind: EdgeKind = EdgeKind.RELATED,
                 weight: float = 1.0) -> GraphEdge:
        if source_id == target_id:
            raise GraphIntegrityError(f"self-loop on {source_id} is not allowed")
        if not 0.0 <= weight <= 1.0:
            raise GraphIntegrityError(f"edge weight must be within [0, 1] (got {weight})")

        with self._lock:
            for endpoint in (source_id, target_id):
                if endpoint not in self._nodes:
                    raise GraphIntegrityError(f"unknown node: {endpoint}")
            edge = GraphEdge(source_id=source_id, target_id=target_id, kind=EdgeKind(kind), weight=float(weight))
            self._out[source_id][(target_id, edge.kind)] = edge
            return edge

    def add_symmetric_edge(self, first_id: str, second_id: str, kind: EdgeKind = EdgeKind.RELATED,
                           weight: float = 1.0) -> Tuple[GraphEdge, GraphEdge]:
        """Add the pair first->second and second->first (e.g. synonym<->synonym)."""
        with self._lock:
            return (
                self.add_edge(first_id, second_id, kind, weight),
                self.add_edge(second_id, first_id, kind, weight),
            )

    def neighbors(self, node_id: str, kinds: Optional[Iterable[EdgeKind]] = None) -> List[GraphEdge]:
        """Outgoing edges of a node, strongest first."""
        allowed = set(EdgeKind(k) for k in kinds) if kinds else None
        with self._lock:
            edges = list(self._out.get(node_id, {}).values())
        if allowed is not None:
            edges = [e for e in edges if e.kind in allowed]
        return sorted(edges, key=lambda e: (-e.weight, e.target_id, e.kind.value))

    def related_to(self, node_id: str, max_depth: Optional[int] = None, min_edge_weight: Optional[float] = None,
                   kinds: Optional[Iterable[EdgeKind]] = None, limit: Optional[int] = None) -> List[RelatedNode]:
        """
        Breadth-first discovery of nodes reachable from `node_id`.

        A direct neighbour scores its edge weight; every further hop multiplies
        the parent's score by the edge weight and the decay factor. Edges under
        `min_edge_weight` are not followed. Each node is reported once, at the
        shallowest depth it is reached, with the best score at that depth.
        """
        max_depth = self.max_depth if max_depth is None else max_depth
        min_edge_weight = self.min_edge_weight if min_edge_weight is None else min_edge_weight
        kinds = list(kinds) if kinds else None

        with self._lock:
            if node_id not in self._nodes:
                return []

            visited = {node_id}
            frontier: Dict[str, float] = {node_id: 1.0}
            found: List[RelatedNode] = []

            for depth in range(1, max_depth + 1):
                level: Dict[str, float] = {}
                hop_decay = 1.0 if depth == 1 else self.edge_weight_decay
                for parent_id, parent_weight in frontier.items():
                    for edge in self.neighbors(parent_id, kinds):
                        if edge.weight < min_edge_weight or edge.target_id in visited:
                            continue
                        effective = parent_weight * edge.weight * hop_decay
                        if effective > level.get(edge.target_id, -1.0):
                            level[edge.target_id] = effective

                if not level:
                    break
                visited.update(level)
                found.extend(
                    RelatedNode(node=self._nodes[target], effective_weight=weight, depth=depth)
                    for target, weight in level.items()
                )
                frontier = level

        found.sort(key=lambda r: (-r.effective_weight, r.depth, r.node.id))
        return found[:limit] if limit is not None else found

    def connect_similar(self, node_id: str, candidates: Sequence[Tuple[str, float]], threshold: float,
                        kind: EdgeKind = EdgeKind.SIMILAR) -> int:
        """Link `node_id` both ways to every known candidate whose similarity reaches `threshold`."""
        created = 0
        with self._lock:
            if node_id not in self._nodes:
                return 0
            for candidate_id, similarity in candidates:
                if candidate_id == node_id or similarity < threshold or candidate_id not in self._nodes:
                    continue
                self.add_symmetric_edge(node_id, candidate_id, kind, min(1.0, float(similarity)))
                created += 1
        if created:
            logger.log_operation("graph.auto_connect", "success", {"node_id": node_id, "edges": created})
        return created

    def node_count(self) -> int:
        with self._lock:
            return len(self._nodes)

    def edge_count(self) -> int:
        with self._lock:
            return sum(len(edges) for edges in self._out.values())
