"""
Graph store configuration and lifecycle.
"""

from typing import Optional
import os
import logging

from policygraph.graph.base import GraphStore

logger = logging.getLogger("policygraph")

# Backend: "neo4j" (default) or "memory"
GRAPH_BACKEND = os.getenv("GRAPH_BACKEND", "neo4j").lower()
NEO4J_URI = os.getenv("NEO4J_URI", "neo4j://localhost:7687")
NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "neo4j")
NEO4J_DATABASE = os.getenv("NEO4J_DATABASE", "neo4j")

_graph_store: Optional[GraphStore] = None


def create_graph_store(backend: str = GRAPH_BACKEND) -> GraphStore:
    """Build a graph store for the configured backend."""
    if backend == "memory":
        from policygraph.graph.memory import InMemoryGraphStore
        return InMemoryGraphStore()
    if backend == "neo4j":
        from policygraph.graph.neo4j_store import Neo4jGraphStore
        return Neo4jGraphStore(NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD, NEO4J_DATABASE)
    raise ValueError(f"Unknown GRAPH_BACKEND: {backend}")


def get_graph_store() -> GraphStore:
    """Get the process-wide graph store, creating it on first use."""
    global _graph_store
    if _graph_store is None:
        _graph_store = create_graph_store()
    return _graph_store


def initialize_graph_store() -> None:
    """Create the store and its constraints. An unreachable store is logged, not fatal."""
    store = get_graph_store()
    try:
        store.ensure_constraints()
    except Exception as e:
        logger.error(f"Graph store initialization failed | backend={GRAPH_BACKEND} | error={e}")


def close_graph_store() -> None:
    global _graph_store
    if _graph_store is not None:
        _graph_store.close()
        _graph_store = None
