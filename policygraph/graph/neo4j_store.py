"""Neo4j implementation of the graph projection adapter."""

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple
import logging

from neo4j import Driver, GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from policygraph.errors import GraphStoreError
from policygraph.graph.base import (
    NODE_LABELS,
    GraphBatch,
    GraphStore,
    MergeMode,
    check_edge_type,
    check_fields,
    check_key,
    check_label,
)

logger = logging.getLogger("policygraph.graph")


def build_merge_node_query(
    label: str,
    key: Any,
    fields: Dict[str, Any],
    mode: MergeMode = MergeMode.FILL_ABSENT,
    authoritative: Iterable[str] = ()
) -> Tuple[str, Dict[str, Any]]:
    """
    Build the Cypher statement for a node merge.

    Labels and property names are validated identifiers; values always
    travel as parameters.
    """
    label = check_label(label)
    key = check_key(key)
    fields = check_fields(dict(fields))
    authoritative = [name for name in fields if name in set(authoritative)]

    lines = [f"MERGE (n:{label} {{id: $key}})"]
    if fields:
        lines.append("ON CREATE SET n += $props")

    on_match = []
    for name in fields:
        if name in authoritative:
            continue
        if mode == MergeMode.FILL_ABSENT:
            on_match.append(f"n.{name} = coalesce(n.{name}, $props.{name})")
        elif mode == MergeMode.OVERWRITE:
            on_match.append(f"n.{name} = coalesce($props.{name}, n.{name})")
    if on_match:
        lines.append("ON MATCH SET " + ", ".join(on_match))

    if authoritative:
        lines.append("SET " + ", ".join(f"n.{name} = $props.{name}" for name in authoritative))

    return "\n".join(lines), {"key": key, "props": fields}


def build_merge_edge_query(
    from_label: str,
    from_key: Any,
    edge_type: str,
    to_label: str,
    to_key: Any
) -> Tuple[str, Dict[str, Any]]:
    """Build the Cypher statement for an idempotent edge merge."""
    query = (
        f"MERGE (a:{check_label(from_label)} {{id: $from_key}})\n"
        f"MERGE (b:{check_label(to_label)} {{id: $to_key}})\n"
        f"MERGE (a)-[:{check_edge_type(edge_type)}]->(b)"
    )
    return query, {"from_key": check_key(from_key), "to_key": check_key(to_key)}


class Neo4jGraphBatch(GraphBatch):
    """Graph batch bound to an explicit Neo4j transaction."""

    def __init__(self, tx):
        self.tx = tx

    def merge_node(self, label, key, fields, mode=MergeMode.FILL_ABSENT, authoritative=()):
        query, params = build_merge_node_query(label, key, fields, mode, authoritative)
        self.tx.run(query, params).consume()

    def merge_edge(self, from_label, from_key, edge_type, to_label, to_key):
        query, params = build_merge_edge_query(from_label, from_key, edge_type, to_label, to_key)
        self.tx.run(query, params).consume()


class Neo4jGraphStore(GraphStore):
    """Graph store backed by a Neo4j database."""

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        database: str = "neo4j",
        driver: Optional[Driver] = None
    ):
        self.uri = uri
        self.database = database
        self._driver = driver or GraphDatabase.driver(uri, auth=(user, password))
        logger.info(f"Neo4j driver initialized | uri={uri} | database={database}")

    @contextmanager
    def batch(self) -> Iterator[GraphBatch]:
        try:
            session = self._driver.session(database=self.database)
        except (Neo4jError, DriverError) as e:
            raise GraphStoreError(f"Could not open graph session: {e}") from e

        try:
            try:
                tx = session.begin_transaction()
            except (Neo4jError, DriverError) as e:
                raise GraphStoreError(f"Could not begin graph transaction: {e}") from e

            try:
                yield Neo4jGraphBatch(tx)
                tx.commit()
            except (Neo4jError, DriverError) as e:
                self._rollback(tx)
                raise GraphStoreError(str(e)) from e
            except BaseException:
                self._rollback(tx)
                raise
        finally:
            session.close()

    def _rollback(self, tx) -> None:
        if tx.closed():
            return
        try:
            tx.rollback()
        except (Neo4jError, DriverError) as e:
            logger.warning(f"Graph rollback failed | error={e}")

    def ping(self) -> bool:
        try:
            self._driver.verify_connectivity()
            return True
        except (Neo4jError, DriverError) as e:
            logger.warning(f"Neo4j ping failed | uri={self.uri} | error={e}")
            return False

    def ensure_constraints(self) -> None:
        """Ensure a uniqueness constraint on ``id`` for every node label."""
        with self._driver.session(database=self.database) as session:
            for label in sorted(NODE_LABELS):
                constraint_name = f"constraint_{label.lower()}_id_unique"
                cypher = (
                    f"CREATE CONSTRAINT {constraint_name} IF NOT EXISTS "
                    f"FOR (n:{label}) REQUIRE n.id IS UNIQUE"
                )
                try:
                    session.run(cypher).consume()
                    logger.info(f"Ensured constraint | label={label} | constraint={constraint_name}")
                except (Neo4jError, DriverError) as e:
                    logger.error(f"Failed to create constraint | label={label} | error={e}")

    def close(self) -> None:
        self._driver.close()
        logger.info("Neo4j driver closed")
