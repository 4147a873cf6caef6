"""
Graph projection adapter contract.

The graph holds Customer, Agent, Policy and Claim nodes keyed by a string
``id`` and the edges Customer-HAS->Policy, Policy-HAS->Claim and
Agent-MANAGES->Policy. It is fully rebuildable from the primary store.

Merge modes, applied when the node already exists (a new node always gets
every non-null field):

- CREATE_ONLY: leave the existing node untouched.
- FILL_ABSENT: set a field only when it is currently absent.
- OVERWRITE: set a field whenever the new value is not null.

Fields listed in ``authoritative`` are always set to the new value,
whatever the mode.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Optional
import re

from policygraph.errors import GraphStoreError

NODE_LABELS = frozenset({"Customer", "Agent", "Policy", "Claim"})
EDGE_TYPES = frozenset({"HAS", "MANAGES"})

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MergeMode(str, Enum):
    CREATE_ONLY = "createOnly"
    FILL_ABSENT = "mergeFillAbsent"
    OVERWRITE = "mergeOverwrite"


def check_label(label: str) -> str:
    if label not in NODE_LABELS:
        raise GraphStoreError(f"Unknown node label: {label}")
    return label


def check_edge_type(edge_type: str) -> str:
    if edge_type not in EDGE_TYPES:
        raise GraphStoreError(f"Unknown edge type: {edge_type}")
    return edge_type


def check_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    for name in fields:
        if not _IDENTIFIER.match(name) or name == "id":
            raise GraphStoreError(f"Invalid property name: {name}")
    return fields


def check_key(key: Any) -> str:
    if key is None or str(key).strip() == "":
        raise GraphStoreError("Node key must be a non-empty string")
    return str(key)


def apply_merge(
    existing: Optional[Dict[str, Any]],
    fields: Dict[str, Any],
    mode: MergeMode,
    authoritative: Iterable[str] = ()
) -> Dict[str, Any]:
    """
    Compute the node properties resulting from a merge.

    Args:
        existing: Current properties, or None when the node does not exist
        fields: Incoming properties
        mode: Merge mode for an existing node
        authoritative: Fields always replaced by the incoming value

    Returns:
        The new property mapping (null values are never stored)
    """
    authoritative = set(authoritative)

    if existing is None:
        return {name: value for name, value in fields.items() if value is not None}

    merged = dict(existing)
    for name, value in fields.items():
        if name in authoritative:
            if value is None:
                merged.pop(name, None)
            else:
                merged[name] = value
        elif value is None or mode == MergeMode.CREATE_ONLY:
            continue
        elif mode == MergeMode.OVERWRITE:
            merged[name] = value
        elif merged.get(name) is None:
            merged[name] = value
    return merged


class GraphBatch(ABC):
    """Unit of work inside one graph transaction."""

    @abstractmethod
    def merge_node(
        self,
        label: str,
        key: Any,
        fields: Dict[str, Any],
        mode: MergeMode = MergeMode.FILL_ABSENT,
        authoritative: Iterable[str] = ()
    ) -> None:
        """Create or merge the node ``(label {id: key})``."""

    @abstractmethod
    def merge_edge(
        self,
        from_label: str,
        from_key: Any,
        edge_type: str,
        to_label: str,
        to_key: Any
    ) -> None:
        """Create the edge once; missing endpoint nodes are created bare."""


class GraphStore(ABC):
    """Graph projection adapter."""

    @abstractmethod
    @contextmanager
    def batch(self) -> Iterator[GraphBatch]:
        """
        Open a transaction scoped to the ``with`` block.

        Commits when the block exits normally and rolls back otherwise.
        Driver failures surface as GraphStoreError.
        """

    @abstractmethod
    def ping(self) -> bool:
        """True when the store is reachable."""

    def merge_node(self, label, key, fields, mode=MergeMode.FILL_ABSENT, authoritative=()):
        with self.batch() as batch:
            batch.merge_node(label, key, fields, mode, authoritative)

    def merge_edge(self, from_label, from_key, edge_type, to_label, to_key):
        with self.batch() as batch:
            batch.merge_edge(from_label, from_key, edge_type, to_label, to_key)

    def ensure_constraints(self) -> None:
        """Create uniqueness constraints where the backend supports them."""

    def close(self) -> None:
        """Release driver resources."""
