"""
Reconciliation job: rebuild the graph projection from the primary store.

Walks every collection in fixed-size batches and upserts the derived
nodes and edges, one graph transaction per batch. All writes are
idempotent merges that only fill absent fields; the exceptions are the
flags that mirror authoritative state (customer ``active``/``baja``,
agent ``active``) and claim ``status``, which always take the current
primary value. A failing batch aborts the run; batches already
committed stay, and the job is meant to be re-run in full.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from itertools import islice
from typing import Dict, Iterable, Iterator, List, Set, Tuple
import logging
import os

from policygraph.graph.base import GraphStore, MergeMode
from policygraph.services import projection
from policygraph.services.normalize import canonical_key
from policygraph.store import PrimaryStore

logger = logging.getLogger("policygraph.reconcile")

BATCH_SIZE = int(os.getenv("RECONCILE_BATCH_SIZE", "500"))


@dataclass
class ReconciliationSummary:
    """Counters for one reconciliation run."""
    customers: int = 0
    agents: int = 0
    policies: int = 0
    claims: int = 0
    skipped: int = 0
    markers_cleared: int = 0
    deferrals_resolved: int = 0

    @property
    def processed(self) -> int:
        return self.customers + self.agents + self.policies + self.claims

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["processed"] = self.processed
        return data


def batched(items: Iterable, size: int) -> Iterator[List]:
    """Yield lists of at most ``size`` items."""
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class ReconciliationJob:
    """Batch rebuild of the graph projection."""

    def __init__(self, primary: PrimaryStore, graph: GraphStore, batch_size: int = BATCH_SIZE):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.primary = primary
        self.graph = graph
        self.batch_size = batch_size

    def run(self) -> ReconciliationSummary:
        """
        Run every pass in order: customers, agents, policies, claims.

        Returns:
            Summary counters

        Raises:
            GraphStoreError: a batch failed; earlier batches stay committed
        """
        started_at = datetime.utcnow()
        summary = ReconciliationSummary()
        logger.info(f"Reconciliation started | batch_size={self.batch_size}")

        self._customers_pass(summary)
        self._agents_pass(summary)
        self._policies_pass(summary)
        orphans = self._claims_pass(summary)

        summary.deferrals_resolved = self.primary.resolve_deferrals(
            created_before=started_at,
            exclude=orphans
        )

        logger.info(
            f"Reconciliation complete | processed={summary.processed} | "
            f"skipped={summary.skipped} | markers_cleared={summary.markers_cleared} | "
            f"deferrals_resolved={summary.deferrals_resolved}"
        )
        return summary

    def _batches(self, collection: str) -> Iterator[List]:
        return batched(self.primary.stream_all(collection, self.batch_size), self.batch_size)

    def _customers_pass(self, summary: ReconciliationSummary) -> None:
        for rows in self._batches("customers"):
            with self.graph.batch() as batch:
                for customer in rows:
                    batch.merge_node(
                        projection.CUSTOMER,
                        canonical_key(customer.customer_id),
                        projection.customer_node(customer),
                        MergeMode.FILL_ABSENT,
                        authoritative=("active", "baja")
                    )
            summary.customers += len(rows)
            summary.markers_cleared += self.primary.clear_sync_markers(
                "customers", [customer.id for customer in rows]
            )
        logger.info(f"Customers pass done | customers={summary.customers}")

    def _agents_pass(self, summary: ReconciliationSummary) -> None:
        for rows in self._batches("agents"):
            with self.graph.batch() as batch:
                for agent in rows:
                    batch.merge_node(
                        projection.AGENT,
                        canonical_key(agent.agent_id),
                        projection.agent_node(agent),
                        MergeMode.FILL_ABSENT,
                        authoritative=("active",)
                    )
            summary.agents += len(rows)
        logger.info(f"Agents pass done | agents={summary.agents}")

    def _policies_pass(self, summary: ReconciliationSummary) -> None:
        for rows in self._batches("policies"):
            with self.graph.batch() as batch:
                for policy in rows:
                    key = projection.policy_key(policy)
                    batch.merge_node(
                        projection.POLICY, key, projection.policy_node(policy), MergeMode.FILL_ABSENT
                    )
                    customer_key = canonical_key(policy.customer_id)
                    if customer_key:
                        batch.merge_edge(projection.CUSTOMER, customer_key, projection.HAS, projection.POLICY, key)
                    agent_key = canonical_key(policy.agent_id)
                    if agent_key:
                        batch.merge_edge(projection.AGENT, agent_key, projection.MANAGES, projection.POLICY, key)
            summary.policies += len(rows)
            summary.markers_cleared += self.primary.clear_sync_markers(
                "policies", [policy.id for policy in rows]
            )
        logger.info(f"Policies pass done | policies={summary.policies}")

    def build_policy_lookup(self) -> Tuple[Dict[int, str], Set[str]]:
        """
        Map store-generated policy ids to canonical policy keys.

        Returns:
            (keys by id, set of every canonical key)
        """
        keys_by_id = {}
        for policy in self.primary.stream_all("policies", self.batch_size):
            keys_by_id[policy.id] = projection.policy_key(policy)
        return keys_by_id, set(keys_by_id.values())

    def _claims_pass(self, summary: ReconciliationSummary) -> Set[Tuple[str, str]]:
        """Upsert claims; returns the (collection, key) pairs of skipped orphans."""
        keys_by_id, known_keys = self.build_policy_lookup()
        orphans = set()

        for rows in self._batches("claims"):
            synced_ids = []
            with self.graph.batch() as batch:
                for claim in rows:
                    policy_key = projection.resolve_claim_policy_key(claim, keys_by_id, known_keys)
                    if policy_key is None:
                        summary.skipped += 1
                        orphans.add(("claims", str(claim.claim_id)))
                        logger.warning(
                            f"Skipping orphan claim | id={claim.id} | claim_id={claim.claim_id} | "
                            f"policy_number={claim.policy_number} | policy_ref={claim.policy_ref}"
                        )
                        continue

                    claim_key = projection.claim_key(claim)
                    batch.merge_node(
                        projection.CLAIM,
                        claim_key,
                        projection.claim_node(claim),
                        MergeMode.FILL_ABSENT,
                        authoritative=("status",)
                    )
                    batch.merge_edge(projection.POLICY, policy_key, projection.HAS, projection.CLAIM, claim_key)
                    synced_ids.append(claim.id)
            summary.claims += len(synced_ids)
            summary.markers_cleared += self.primary.clear_sync_markers("claims", synced_ids)

        logger.info(f"Claims pass done | claims={summary.claims} | skipped={summary.skipped}")
        if summary.skipped:
            logger.warning(f"Claims skipped for missing policy: {summary.skipped}")
        return orphans
