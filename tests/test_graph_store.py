"""
Tests for the relationship graph: invariants, traversal with decay, pruning and cycles.
"""

import pytest

from vocabmind.core.errors import GraphIntegrityError
from vocabmind.graph import EdgeKind, GraphStore, NodeKind


@pytest.fixture
def graph():
    g = GraphStore(max_depth=3, edge_weight_decay=0.8, min_edge_weight=0.3)
    for node_id in ("a", "b", "c", "d", "e"):
        g.add_node(node_id, NodeKind.VOCABULARY, {"word": node_id})
    return g


def test_add_node_merges_properties(graph):
    graph.add_node("a", NodeKind.VOCABULARY, {"level": 2})

    assert graph.node_count() == 5
    assert graph.get_node("a").properties == {"word": "a", "level": 2}


def test_edge_invariants(graph):
    with pytest.raises(GraphIntegrityError):
        graph.add_edge("a", "a", EdgeKind.SYNONYM, 0.5)
    with pytest.raises(GraphIntegrityError):
        graph.add_edge("a", "b", EdgeKind.SYNONYM, 1.5)
    with pytest.raises(GraphIntegrityError):
        graph.add_edge("a", "missing", EdgeKind.SYNONYM, 0.5)
    assert graph.edge_count() == 0


def test_readding_edge_replaces_weight(graph):
    graph.add_edge("a", "b", EdgeKind.SYNONYM, 0.4)
    graph.add_edge("a", "b", EdgeKind.SYNONYM, 0.9)

    assert graph.edge_count() == 1
    assert graph.neighbors("a")[0].weight == 0.9


def test_related_to_applies_decay_per_hop(graph):
    graph.add_edge("a", "b", EdgeKind.RELATED, 0.9)
    graph.add_edge("b", "c", EdgeKind.RELATED, 0.8)

    related = graph.related_to("a")

    assert [(r.node.id, r.depth) for r in related] == [("b", 1), ("c", 2)]
    assert related[0].effective_weight == pytest.approx(0.9)
    assert related[1].effective_weight == pytest.approx(0.9 * 0.8 * 0.8)


def test_related_to_prunes_weak_edges(graph):
    graph.add_edge("a", "b", EdgeKind.RELATED, 0.2)
    graph.add_edge("a", "c", EdgeKind.RELATED, 0.6)
    graph.add_edge("c", "d", EdgeKind.RELATED, 0.25)

    assert [r.node.id for r in graph.related_to("a")] == ["c"]


def test_related_to_terminates_on_cycles(graph):
    graph.add_symmetric_edge("a", "b", EdgeKind.SYNONYM, 0.9)
    graph.add_symmetric_edge("b", "c", EdgeKind.SYNONYM, 0.9)
    graph.add_edge("c", "a", EdgeKind.RELATED, 0.9)

    related = graph.related_to("a", max_depth=10)

    ids = [r.node.id for r in related]
    assert sorted(ids) == ["b", "c"]
    assert "a" not in ids


def test_related_to_keeps_best_path_at_shallowest_depth(graph):
    graph.add_edge("a", "b", EdgeKind.RELATED, 0.5)
    graph.add_edge("a", "c", EdgeKind.RELATED, 0.9)
    graph.add_edge("b", "d", EdgeKind.RELATED, 1.0)
    graph.add_edge("c", "d", EdgeKind.RELATED, 1.0)

    d = next(r for r in graph.related_to("a") if r.node.id == "d")

    assert d.depth == 2
    assert d.effective_weight == pytest.approx(0.9 * 1.0 * 0.8)


def test_related_to_respects_depth_limit_and_kinds(graph):
    graph.add_edge("a", "b", EdgeKind.SYNONYM, 0.9)
    graph.add_edge("b", "c", EdgeKind.SYNONYM, 0.9)
    graph.add_edge("a", "d", EdgeKind.ANTONYM, 0.9)

    assert [r.node.id for r in graph.related_to("a", max_depth=1, kinds=[EdgeKind.SYNONYM])] == ["b"]
    assert graph.related_to("missing") == []


def test_remove_node_drops_incident_edges(graph):
    graph.add_symmetric_edge("a", "b", EdgeKind.TRANSLATION, 0.7)
    graph.add_edge("c", "b", EdgeKind.RELATED, 0.7)

    assert graph.remove_node("b") is True
    assert graph.edge_count() == 0
    assert graph.neighbors("a") == []
    assert graph.remove_node("b") is False


def test_connect_similar_links_above_threshold(graph):
    created = graph.connect_similar("a", [("b", 0.92), ("c", 0.5), ("a", 1.0), ("zzz", 0.99)], threshold=0.85)

    assert created == 1
    assert [(e.target_id, e.kind) for e in graph.neighbors("a")] == [("b", EdgeKind.SIMILAR)]
    assert graph.neighbors("b")[0].target_id == "a"
