"""
Mapping from primary records to graph node properties.

The Sync Coordinator and the Reconciliation Job both derive nodes through
these functions, so a node written by either path has the same keys and
the same property set.
"""

from typing import Any, Dict, Optional

from policygraph.models import Agent, Claim, Customer, Policy
from policygraph.services.normalize import canonical_key, is_truthy, normalize_status

CUSTOMER = "Customer"
AGENT = "Agent"
POLICY = "Policy"
CLAIM = "Claim"
HAS = "HAS"
MANAGES = "MANAGES"


def customer_node(customer: Customer) -> Dict[str, Any]:
    active = is_truthy(customer.active, default=True)
    return {
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "active": active,
        "baja": not active,
    }


def agent_node(agent: Agent) -> Dict[str, Any]:
    return {
        "first_name": agent.first_name,
        "last_name": agent.last_name,
        "active": is_truthy(agent.active, default=True),
    }


def policy_key(policy: Policy) -> str:
    """Canonical graph key: the policy number, else the store-generated id."""
    return canonical_key(policy.policy_number) or str(policy.id)


def policy_node(policy: Policy) -> Dict[str, Any]:
    return {
        "policy_number": canonical_key(policy.policy_number),
        "type": policy.type,
        "status": normalize_status(policy.status),
        "start_date": policy.start_date,
        "end_date": policy.end_date,
        "monthly_premium": policy.monthly_premium,
        "total_coverage": policy.total_coverage,
    }


def claim_key(claim: Claim) -> str:
    return str(claim.id)


def claim_node(claim: Claim) -> Dict[str, Any]:
    return {
        "claim_id": claim.claim_id,
        "type": claim.type,
        "status": normalize_status(claim.status),
        "date": claim.claim_date,
        "amount": claim.amount_estimate,
    }


def resolve_claim_policy_key(
    claim: Claim,
    keys_by_id: Dict[int, str],
    known_keys: set
) -> Optional[str]:
    """
    Resolve the graph key of the policy owning ``claim``.

    The stored policy number is used when it names a known policy; the
    internal ``policy_ref`` is translated through ``keys_by_id``. Returns
    None when neither reference leads to an existing policy.
    """
    number = canonical_key(claim.policy_number)
    if number is not None and number in known_keys:
        return number

    if claim.policy_ref is not None:
        resolved = keys_by_id.get(claim.policy_ref)
        if resolved is not None:
            return resolved
        # Older records stored the policy number in the reference field
        raw = canonical_key(claim.policy_ref)
        if raw in known_keys:
            return raw

    return None
