"""
Dependencies wiring stores and services into request handlers.

Each request gets its own primary store session; the graph store is a
process-wide handle whose transactions are scoped per mutation.
"""

from fastapi import Depends
from sqlmodel import Session

from policygraph.db import get_session
from policygraph.graph.base import GraphStore
from policygraph.graphdb import get_graph_store
from policygraph.services.reconcile import ReconciliationJob
from policygraph.services.sync import SyncCoordinator
from policygraph.store import PrimaryStore


def get_graph() -> GraphStore:
    """Graph store dependency."""
    return get_graph_store()


def get_primary_store(session: Session = Depends(get_session)) -> PrimaryStore:
    """Primary store adapter bound to the request session."""
    return PrimaryStore(session)


def get_coordinator(
    primary: PrimaryStore = Depends(get_primary_store),
    graph: GraphStore = Depends(get_graph)
) -> SyncCoordinator:
    """Sync coordinator for one request."""
    return SyncCoordinator(primary, graph)


def get_reconciliation_job(
    primary: PrimaryStore = Depends(get_primary_store),
    graph: GraphStore = Depends(get_graph)
) -> ReconciliationJob:
    return ReconciliationJob(primary, graph)
