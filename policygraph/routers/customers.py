"""
Customers router: create, partial update and deactivation.
"""

from fastapi import APIRouter, Depends, Request
import logging

from policygraph.schemas import CustomerCreate, CustomerUpdate, CustomerResponse, DeactivationResponse
from policygraph.deps import get_coordinator, get_primary_store
from policygraph.errors import NotFoundError
from policygraph.services.sync import SyncCoordinator
from policygraph.store import PrimaryStore

logger = logging.getLogger("policygraph")

router = APIRouter()


@router.post("/customers", response_model=CustomerResponse, status_code=201)
async def create_customer(
    request: CustomerCreate,
    request_obj: Request,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """
    Create a customer.

    The customer is stored first; the graph node is written afterwards on
    a best-effort basis and a graph failure does not fail the request.
    """
    request_id = getattr(request_obj.state, "request_id", "unknown")
    result = coordinator.create_customer(request.model_dump())
    logger.info(
        f"Customer create handled | request_id={request_id} | "
        f"customer_id={result.record.customer_id} | sync={result.outcome.status.value}"
    )
    return CustomerResponse.model_validate(result.record)


@router.get("/customers/{customer_id}", response_model=CustomerResponse)
async def get_customer(
    customer_id: str,
    primary: PrimaryStore = Depends(get_primary_store)
):
    """Retrieve a customer from the primary store."""
    customer = primary.find_by_key("customers", customer_id)
    if customer is None:
        raise NotFoundError("customer_not_found", f"customer {customer_id} not found")
    return CustomerResponse.model_validate(customer)


@router.patch("/customers/{customer_id}", response_model=CustomerResponse)
async def update_customer(
    customer_id: str,
    request: CustomerUpdate,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """Apply a partial update; only the fields present in the body change."""
    result = coordinator.update_customer(customer_id, request.model_dump(exclude_unset=True))
    return CustomerResponse.model_validate(result.record)


@router.patch("/customers/{customer_id}/deactivate", response_model=DeactivationResponse)
async def deactivate_customer(
    customer_id: str,
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """Soft-delete a customer by setting active=false. Idempotent."""
    result = coordinator.deactivate_customer(customer_id)
    return DeactivationResponse(
        customer_id=result.record.customer_id,
        active=bool(result.record.active),
        sync_status=result.outcome.status.value
    )
