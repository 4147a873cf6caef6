"""
Shared fixtures: an in-memory primary store, a graph store that can be
taken down on demand, and an API client wired to both.
"""

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from policygraph.main import app
from policygraph.db import get_session
from policygraph.deps import get_graph
from policygraph.errors import GraphStoreError
from policygraph.graph.memory import InMemoryGraphStore
from policygraph.services.sync import SyncCoordinator
from policygraph.store import PrimaryStore


class SwitchableGraphStore(InMemoryGraphStore):
    """In-memory graph store that fails every transaction while ``down``."""

    def __init__(self):
        super().__init__()
        self.down = False

    @contextmanager
    def batch(self):
        if self.down:
            raise GraphStoreError("graph store unavailable")
        with super().batch() as batch:
            yield batch

    def ping(self):
        return not self.down


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def primary(session):
    return PrimaryStore(session)


@pytest.fixture
def graph():
    return SwitchableGraphStore()


@pytest.fixture
def coordinator(primary, graph):
    return SyncCoordinator(primary, graph)


@pytest.fixture
def active_parties(coordinator, primary):
    """Active customer 1 (Ana Lopez) and active agent 5."""
    coordinator.create_customer({"customer_id": 1, "first_name": "Ana", "last_name": "Lopez"})
    primary.insert("agents", {"agent_id": 5, "first_name": "Marta", "last_name": "Gomez", "active": True})


@pytest.fixture
def policy_p1(coordinator, active_parties):
    """Active Auto policy P1 for customer 1 managed by agent 5."""
    return coordinator.create_policy({
        "policy_number": "P1",
        "customer_id": 1,
        "agent_id": 5,
        "type": "Auto",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
        "total_coverage": 100000,
    }).record


@pytest.fixture
def client(engine, graph):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_graph] = lambda: graph
    yield TestClient(app)
    app.dependency_overrides.clear()
