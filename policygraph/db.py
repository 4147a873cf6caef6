"""
Database configuration and session management.
"""

from sqlmodel import SQLModel, create_engine, Session
from typing import Generator
import os
import logging

# Import all models to ensure they are registered with SQLModel
from policygraph.models import Customer, Agent, Policy, Claim, Vehicle, Sequence, SyncDeferral  # noqa: F401
from policygraph.cache import config_cache

logger = logging.getLogger("policygraph")

# Database URL - defaults to SQLite for development
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/policygraph.db")
LOAD_SEED_DATA = os.getenv("LOAD_SEED_DATA", "false").lower() in ("1", "true", "yes")

# Seed collections in dependency order, with their identity key
SEED_COLLECTIONS = [
    ("customers", "customer_id"),
    ("agents", "agent_id"),
    ("policies", "policy_number"),
    ("claims", "claim_id"),
    ("vehicles", "plate"),
]


def _create_engine(url: str):
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
        directory = os.path.dirname(path)
        if directory and path != ":memory:":
            os.makedirs(directory, exist_ok=True)
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False)


# Create engine
engine = _create_engine(DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables."""
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine) as session:
        yield session


def load_seed_data(session: Session) -> int:
    """
    Load seed data from config/seed.json into the primary store.

    Records whose key already exists are skipped. Dates and flags are
    normalized by the store adapter, so the legacy D/M/YYYY strings and
    si/yes/1 flags in the file load as-is.

    Returns:
        Number of records inserted
    """
    from policygraph.store import PrimaryStore

    store = PrimaryStore(session)
    seed_data = config_cache.get_seed_data()
    inserted = 0

    for collection, key_field in SEED_COLLECTIONS:
        for record in seed_data.get(collection, []):
            if store.find_by_key(collection, record[key_field]) is not None:
                continue
            store.insert(collection, dict(record))
            inserted += 1

    logger.info(f"Seed data loaded | inserted={inserted}")
    return inserted


def initialize_database():
    """Initialize database with tables and, if enabled, seed data."""
    logger.info("Creating database tables...")
    create_db_and_tables()
    if LOAD_SEED_DATA:
        with Session(engine) as session:
            load_seed_data(session)
    logger.info("Database initialization complete")
