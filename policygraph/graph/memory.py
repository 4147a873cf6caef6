"""
In-process graph store.

Used for local runs without a Neo4j server (GRAPH_BACKEND=memory) and by
the test suite. Batches work on a copy of the graph that replaces the
live state only on commit.
"""

from contextlib import contextmanager
from threading import RLock
from typing import Any, Dict, Iterator, Optional, Set, Tuple
import copy

from policygraph.graph.base import (
    GraphBatch,
    GraphStore,
    MergeMode,
    apply_merge,
    check_edge_type,
    check_fields,
    check_key,
    check_label,
)

NodeKey = Tuple[str, str]
Edge = Tuple[str, str, str, str, str]


class InMemoryGraphBatch(GraphBatch):

    def __init__(self, nodes: Dict[NodeKey, Dict[str, Any]], edges: Set[Edge]):
        self.nodes = nodes
        self.edges = edges

    def merge_node(self, label, key, fields, mode=MergeMode.FILL_ABSENT, authoritative=()):
        node_key = (check_label(label), check_key(key))
        fields = check_fields(dict(fields))
        self.nodes[node_key] = apply_merge(self.nodes.get(node_key), fields, mode, authoritative)

    def merge_edge(self, from_label, from_key, edge_type, to_label, to_key):
        source = (check_label(from_label), check_key(from_key))
        target = (check_label(to_label), check_key(to_key))
        self.nodes.setdefault(source, {})
        self.nodes.setdefault(target, {})
        self.edges.add((source[0], source[1], check_edge_type(edge_type), target[0], target[1]))


class InMemoryGraphStore(GraphStore):
    """Graph store kept in process memory."""

    def __init__(self):
        self.nodes: Dict[NodeKey, Dict[str, Any]] = {}
        self.edges: Set[Edge] = set()
        self._lock = RLock()

    @contextmanager
    def batch(self) -> Iterator[GraphBatch]:
        with self._lock:
            batch = InMemoryGraphBatch(copy.deepcopy(self.nodes), set(self.edges))
            yield batch
            self.nodes, self.edges = batch.nodes, batch.edges

    def ping(self) -> bool:
        return True

    def node(self, label: str, key: Any) -> Optional[Dict[str, Any]]:
        """Return a copy of the node properties, or None."""
        props = self.nodes.get((label, str(key)))
        return dict(props) if props is not None else None

    def has_edge(self, from_label, from_key, edge_type, to_label, to_key) -> bool:
        return (from_label, str(from_key), edge_type, to_label, str(to_key)) in self.edges

    def count_nodes(self, label: str) -> int:
        return sum(1 for node_label, _ in self.nodes if node_label == label)

    def snapshot(self) -> Tuple[Dict[NodeKey, Dict[str, Any]], Set[Edge]]:
        """Deep copy of the whole graph, for comparisons."""
        with self._lock:
            return copy.deepcopy(self.nodes), set(self.edges)

    def clear(self) -> None:
        with self._lock:
            self.nodes = {}
            self.edges = set()
