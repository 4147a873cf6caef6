"""
Policies router for creating and retrieving policies.
"""

from fastapi import APIRouter, Depends, Request
import logging

from policygraph.schemas import PolicyCreate, PolicyResponse
from policygraph.deps import get_coordinator, get_primary_store
from policygraph.errors import NotFoundError
from policygraph.services.sync import SyncCoordinator
from policygraph.store import PrimaryStore

logger = logging.getLogger("policygraph")

router = APIRouter()


@router.post("/policies", response_model=PolicyResponse, status_code=201)
async def create_policy(
    request: PolicyCreate,
    request_obj: Request,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """
    Create a policy.

    This endpoint:
    1. Rejects a policy number already in use
    2. Checks that customer and agent exist and are active
    3. Validates the date range
    4. Stores the policy, then projects it and its edges into the graph

    A failed graph write leaves sync_error=true on the returned policy.
    """
    request_id = getattr(request_obj.state, "request_id", "unknown")
    result = coordinator.create_policy(request.model_dump())
    logger.info(
        f"Policy create handled | request_id={request_id} | "
        f"policy_number={result.record.policy_number} | sync={result.outcome.status.value}"
    )
    return PolicyResponse.model_validate(result.record)


@router.get("/policies/{policy_number}", response_model=PolicyResponse)
async def get_policy(
    policy_number: str,
    primary: PrimaryStore = Depends(get_primary_store)
):
    """Retrieve a policy by policy number."""
    policy = primary.find_by_key("policies", policy_number)
    if policy is None:
        raise NotFoundError("policy_not_found", f"policy {policy_number} not found")
    return PolicyResponse.model_validate(policy)
