"""Relationship graph between vocabulary items."""

from .store import GraphStore, GraphNode, GraphEdge, RelatedNode, NodeKind, EdgeKind

__all__ = ["GraphStore", "GraphNode", "GraphEdge", "RelatedNode", "NodeKind", "EdgeKind"]
