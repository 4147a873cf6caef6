"""
Sync coordinator: one logical write, two stores.

Each mutation commits to the primary store first, then attempts the
derived graph write in a single graph transaction. The primary write is
never rolled back. A failed derived write produces a DEFERRED outcome,
which marks the primary record, queues a deferral for operators and is
then either swallowed or surfaced according to the per-mutation policy
table in config/sync_policy.yaml.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Optional
import logging
import os

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel

from policygraph.cache import SURFACE, SWALLOW, config_cache
from policygraph.errors import (
    ConflictError,
    DependencyUnavailable,
    GraphStoreError,
    NotFoundError,
    SyncError,
    ValidationError,
)
from policygraph.graph.base import GraphBatch, GraphStore, MergeMode
from policygraph.services import projection
from policygraph.services.normalize import (
    canonical_key,
    is_claim_eligible,
    is_truthy,
    normalize_status,
    parse_date,
)
from policygraph.store import PrimaryStore

logger = logging.getLogger("policygraph.sync")

# First claim id is count(claims) + offset; later ids come from the counter
CLAIM_ID_OFFSET = int(os.getenv("CLAIM_ID_OFFSET", "1000"))
CLAIM_SEQUENCE = "claims"

UPDATABLE_CUSTOMER_FIELDS = frozenset({"first_name", "last_name", "email", "phone", "address", "active"})


class SyncStatus(str, Enum):
    SYNCED = "synced"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class SyncOutcome:
    """Outcome of the derived write of one mutation."""
    status: SyncStatus
    reason: Optional[str] = None

    @classmethod
    def synced(cls) -> "SyncOutcome":
        return cls(SyncStatus.SYNCED)

    @classmethod
    def deferred(cls, reason: str) -> "SyncOutcome":
        return cls(SyncStatus.DEFERRED, reason)

    @property
    def is_synced(self) -> bool:
        return self.status == SyncStatus.SYNCED


# Mutations
@dataclass(frozen=True)
class CreateCustomer:
    kind: ClassVar[str] = "create_customer"
    data: Dict[str, Any]


@dataclass(frozen=True)
class UpdateCustomer:
    kind: ClassVar[str] = "update_customer"
    customer_id: Any
    fields: Dict[str, Any]


@dataclass(frozen=True)
class DeactivateCustomer:
    kind: ClassVar[str] = "deactivate_customer"
    customer_id: Any


@dataclass(frozen=True)
class CreatePolicy:
    kind: ClassVar[str] = "create_policy"
    data: Dict[str, Any]


@dataclass(frozen=True)
class CreateClaim:
    kind: ClassVar[str] = "create_claim"
    data: Dict[str, Any]


@dataclass
class MutationResult:
    record: SQLModel
    outcome: SyncOutcome = field(default_factory=SyncOutcome.synced)


@dataclass
class _PrimaryWrite:
    """What a handler hands back once the primary write has committed."""
    record: SQLModel
    collection: str
    key: Any
    derive: Callable[[GraphBatch], None]


def _text(data: Dict[str, Any], name: str) -> Optional[str]:
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class SyncCoordinator:
    """Applies mutations as primary write, then best-effort derived write."""

    def __init__(
        self,
        primary: PrimaryStore,
        graph: GraphStore,
        failure_policy: Optional[Dict[str, str]] = None,
        claim_id_offset: int = CLAIM_ID_OFFSET
    ):
        self.primary = primary
        self.graph = graph
        self.failure_policy = failure_policy if failure_policy is not None else config_cache.get_sync_policy()
        self.claim_id_offset = claim_id_offset
        self._handlers = {
            CreateCustomer: self._create_customer,
            UpdateCustomer: self._update_customer,
            DeactivateCustomer: self._deactivate_customer,
            CreatePolicy: self._create_policy,
            CreateClaim: self._create_claim,
        }

    def apply(self, mutation) -> MutationResult:
        """
        Apply one mutation.

        Raises:
            ValidationError, ConflictError, NotFoundError: before any write
            InternalError: primary store failure, before any derived write
            DependencyUnavailable: derived write failed and the policy for
                this mutation kind is "surface" (the primary write stands)
        """
        handler = self._handlers.get(type(mutation))
        if handler is None:
            raise TypeError(f"Unsupported mutation: {type(mutation).__name__}")

        write = handler(mutation)
        outcome = self._derive(write.derive)

        if not outcome.is_synced:
            self._defer(mutation.kind, write, outcome.reason)
            if self.failure_policy.get(mutation.kind, SWALLOW) == SURFACE:
                raise DependencyUnavailable(
                    "graph_sync_failed",
                    f"{write.collection} {write.key} was stored but not synchronized: {outcome.reason}"
                )

        return MutationResult(record=write.record, outcome=outcome)

    # Convenience entry points used by the HTTP layer
    def create_customer(self, data: Dict[str, Any]) -> MutationResult:
        return self.apply(CreateCustomer(data))

    def update_customer(self, customer_id: Any, fields: Dict[str, Any]) -> MutationResult:
        return self.apply(UpdateCustomer(customer_id, fields))

    def deactivate_customer(self, customer_id: Any) -> MutationResult:
        return self.apply(DeactivateCustomer(customer_id))

    def create_policy(self, data: Dict[str, Any]) -> MutationResult:
        return self.apply(CreatePolicy(data))

    def create_claim(self, data: Dict[str, Any]) -> MutationResult:
        return self.apply(CreateClaim(data))

    # ------------------------------------------------------------------
    # Derived write bookkeeping
    # ------------------------------------------------------------------

    def _derive(self, derive: Callable[[GraphBatch], None]) -> SyncOutcome:
        try:
            with self.graph.batch() as batch:
                derive(batch)
        except GraphStoreError as e:
            return SyncOutcome.deferred(str(e) or e.__class__.__name__)
        return SyncOutcome.synced()

    def _defer(self, kind: str, write: _PrimaryWrite, reason: str) -> None:
        logger.warning(
            f"Derived write deferred | mutation={kind} | "
            f"collection={write.collection} | key={write.key} | reason={reason}"
        )
        try:
            self.primary.update_fields(
                write.collection,
                write.key,
                {"sync_error": True, "sync_error_detail": reason[:500]}
            )
            self.primary.record_deferral(write.collection, write.key, kind, reason)
        except (SyncError, SQLAlchemyError) as e:
            # The primary write already committed; reconciliation repairs the graph anyway
            self.primary.session.rollback()
            logger.error(
                f"Could not record deferral | mutation={kind} | "
                f"collection={write.collection} | key={write.key} | error={e}"
            )

    # ------------------------------------------------------------------
    # Handlers: validate, write the primary record, describe the derived write
    # ------------------------------------------------------------------

    def _create_customer(self, mutation: CreateCustomer) -> _PrimaryWrite:
        data = mutation.data
        key = canonical_key(data.get("customer_id"))
        first_name = _text(data, "first_name")
        last_name = _text(data, "last_name")
        if not key or not first_name or not last_name:
            raise ValidationError("missing_fields", "customer_id, first_name and last_name are required")

        if self.primary.find_by_key("customers", key) is not None:
            raise ConflictError("customer_exists", f"customer {key} already exists")

        self.primary.insert("customers", {
            "customer_id": key,
            "first_name": first_name,
            "last_name": last_name,
            "email": _text(data, "email"),
            "phone": _text(data, "phone"),
            "address": _text(data, "address"),
            "active": is_truthy(data.get("active"), default=True),
        })
        customer = self.primary.find_by_key("customers", key)
        logger.info(f"Customer created | customer_id={key}")

        def derive(batch: GraphBatch) -> None:
            batch.merge_node(projection.CUSTOMER, key, projection.customer_node(customer), MergeMode.OVERWRITE)

        return _PrimaryWrite(customer, "customers", key, derive)

    def _update_customer(self, mutation: UpdateCustomer) -> _PrimaryWrite:
        key = canonical_key(mutation.customer_id)
        # An explicit null means "not sent"; it never clears or reactivates
        fields = {name: value for name, value in mutation.fields.items() if value is not None}
        if not key:
            raise ValidationError("missing_fields", "customer_id is required")

        if "customer_id" in fields:
            if canonical_key(fields.pop("customer_id")) != key:
                raise ValidationError("identity_change", "customer_id cannot be changed")
        if not fields:
            raise ValidationError("empty_update", "No fields to update")

        unknown = set(fields) - UPDATABLE_CUSTOMER_FIELDS
        if unknown:
            raise ValidationError("invalid_field", f"Fields not updatable: {', '.join(sorted(unknown))}")
        for name in ("first_name", "last_name"):
            if name in fields and not _text(fields, name):
                raise ValidationError("missing_fields", f"{name} cannot be empty")
        if "active" in fields:
            fields["active"] = is_truthy(fields["active"], default=True)

        if self.primary.update_fields("customers", key, fields) == 0:
            raise NotFoundError("customer_not_found", f"customer {key} not found")
        customer = self.primary.find_by_key("customers", key)
        logger.info(f"Customer updated | customer_id={key} | fields={','.join(sorted(fields))}")

        node = projection.customer_node(customer)
        changed = {name: value for name, value in node.items() if name in fields}
        if "active" in fields:
            changed["baja"] = node["baja"]

        def derive(batch: GraphBatch) -> None:
            batch.merge_node(projection.CUSTOMER, key, changed, MergeMode.OVERWRITE)

        return _PrimaryWrite(customer, "customers", key, derive)

    def _deactivate_customer(self, mutation: DeactivateCustomer) -> _PrimaryWrite:
        key = canonical_key(mutation.customer_id)
        if not key or self.primary.update_fields("customers", key, {"active": False}) == 0:
            raise NotFoundError("customer_not_found", f"customer {key} not found")
        customer = self.primary.find_by_key("customers", key)
        logger.info(f"Customer deactivated | customer_id={key}")

        def derive(batch: GraphBatch) -> None:
            batch.merge_node(projection.CUSTOMER, key, {"active": False, "baja": True}, MergeMode.OVERWRITE)

        return _PrimaryWrite(customer, "customers", key, derive)

    def _create_policy(self, mutation: CreatePolicy) -> _PrimaryWrite:
        data = mutation.data
        key = canonical_key(data.get("policy_number"))
        customer_key = canonical_key(data.get("customer_id"))
        agent_key = canonical_key(data.get("agent_id"))
        policy_type = _text(data, "type")
        if not key or not customer_key or not agent_key or not policy_type:
            raise ValidationError(
                "missing_fields",
                "policy_number, customer_id, agent_id and type are required"
            )

        if self.primary.find_by_key("policies", key) is not None:
            raise ConflictError("policy_exists", f"policy {key} already exists")

        customer = self.primary.find_by_key("customers", customer_key)
        if customer is None:
            raise ValidationError("customer_missing", f"customer {customer_key} does not exist")
        agent = self.primary.find_by_key("agents", agent_key)
        if agent is None:
            raise ValidationError("agent_missing", f"agent {agent_key} does not exist")
        if not is_truthy(customer.active, default=True):
            raise ValidationError("customer_inactive", f"customer {customer_key} is not active")
        if not is_truthy(agent.active, default=True):
            raise ValidationError("agent_inactive", f"agent {agent_key} is not active")

        start_date = parse_date(data.get("start_date"))
        end_date = parse_date(data.get("end_date"))
        if start_date is None or end_date is None:
            raise ValidationError("invalid_dates", "start_date and end_date must be YYYY-MM-DD or D/M/YYYY")
        if start_date > end_date:
            raise ValidationError("invalid_date_range", "start_date must not be after end_date")

        self.primary.insert("policies", {
            "policy_number": key,
            "customer_id": customer_key,
            "agent_id": agent_key,
            "type": policy_type,
            "start_date": start_date,
            "end_date": end_date,
            "monthly_premium": data.get("monthly_premium"),
            "total_coverage": data.get("total_coverage"),
            "status": normalize_status(data.get("status")) or "ACTIVE",
        })
        policy = self.primary.find_by_key("policies", key)
        logger.info(f"Policy created | policy_number={key} | customer_id={customer_key} | agent_id={agent_key}")

        def derive(batch: GraphBatch) -> None:
            # Null incoming values never clear existing ones, so coverage is only replaced when sent
            batch.merge_node(projection.POLICY, key, projection.policy_node(policy), MergeMode.OVERWRITE)
            batch.merge_edge(projection.CUSTOMER, customer_key, projection.HAS, projection.POLICY, key)
            batch.merge_edge(projection.AGENT, agent_key, projection.MANAGES, projection.POLICY, key)

        return _PrimaryWrite(policy, "policies", key, derive)

    def _initial_claim_id(self) -> int:
        # Continue the legacy count + offset numbering without reusing imported ids
        highest = self.primary.max_key("claims") or 0
        return max(self.primary.count_all("claims") + self.claim_id_offset, highest + 1)

    def _create_claim(self, mutation: CreateClaim) -> _PrimaryWrite:
        data = mutation.data
        policy_number = canonical_key(data.get("policy_number"))
        claim_type = _text(data, "type")
        if not policy_number or not claim_type:
            raise ValidationError("missing_fields", "policy_number and type are required")

        policy = self.primary.find_by_key("policies", policy_number)
        if policy is None:
            raise ValidationError("policy_missing", f"policy {policy_number} does not exist")
        if not is_claim_eligible(policy.status):
            raise ValidationError(
                "policy_not_eligible",
                f"policy {policy_number} has status {policy.status}"
            )

        if data.get("date") in (None, ""):
            claim_date = date.today()
        else:
            claim_date = parse_date(data.get("date"))
            if claim_date is None:
                raise ValidationError("invalid_dates", "date must be YYYY-MM-DD or D/M/YYYY")

        claim_id = self.primary.next_sequence(CLAIM_SEQUENCE, self._initial_claim_id)
        record_id = self.primary.insert("claims", {
            "claim_id": claim_id,
            "policy_number": policy.policy_number,
            "policy_ref": policy.id,
            "type": claim_type,
            "amount_estimate": data.get("amount_estimate"),
            "description": _text(data, "description"),
            "status": _text(data, "status") or "Open",
            "claim_date": claim_date,
        })
        claim = self.primary.find_by_id("claims", record_id)
        policy_graph_key = projection.policy_key(policy)
        logger.info(f"Claim created | claim_id={claim_id} | policy_number={policy_number}")

        def derive(batch: GraphBatch) -> None:
            batch.merge_node(
                projection.CLAIM,
                projection.claim_key(claim),
                projection.claim_node(claim),
                MergeMode.FILL_ABSENT
            )
            batch.merge_edge(
                projection.POLICY, policy_graph_key, projection.HAS,
                projection.CLAIM, projection.claim_key(claim)
            )

        return _PrimaryWrite(claim, "claims", claim_id, derive)
