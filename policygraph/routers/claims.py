"""
Claims router.
"""

from fastapi import APIRouter, Depends, Request
import logging

from policygraph.schemas import ClaimCreate, ClaimResponse
from policygraph.deps import get_coordinator, get_primary_store
from policygraph.errors import NotFoundError
from policygraph.services.sync import SyncCoordinator
from policygraph.store import PrimaryStore

logger = logging.getLogger("policygraph")

router = APIRouter()


@router.post("/claims", response_model=ClaimResponse, status_code=201)
async def create_claim(
    request: ClaimCreate,
    request_obj: Request,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """
    File a claim against an eligible policy.

    Unlike the other writes, a failed graph write makes this request fail
    with 503 graph_sync_failed. The claim itself is kept and flagged.
    """
    request_id = getattr(request_obj.state, "request_id", "unknown")
    result = coordinator.create_claim(request.model_dump())
    logger.info(
        f"Claim create handled | request_id={request_id} | "
        f"claim_id={result.record.claim_id} | sync={result.outcome.status.value}"
    )
    return ClaimResponse.model_validate(result.record)


@router.get("/claims/{claim_id}", response_model=ClaimResponse)
async def get_claim(
    claim_id: int,
    primary: PrimaryStore = Depends(get_primary_store)
):
    """Retrieve a claim by its sequential claim id."""
    claim = primary.find_by_key("claims", claim_id)
    if claim is None:
        raise NotFoundError("claim_not_found", f"claim {claim_id} not found")
    return ClaimResponse.model_validate(claim)
