"""
Agents and vehicles router.

These records live only in the primary store: agents reach the graph
through the policies they manage and through reconciliation.
"""

from fastapi import APIRouter, Depends

from policygraph.schemas import AgentCreate, AgentResponse, VehicleCreate, VehicleResponse
from policygraph.deps import get_primary_store
from policygraph.errors import ConflictError, ValidationError
from policygraph.services.normalize import canonical_key, is_truthy
from policygraph.store import PrimaryStore

router = APIRouter()


@router.post("/agents", response_model=AgentResponse, status_code=201)
async def create_agent(
    request: AgentCreate,
    primary: PrimaryStore = Depends(get_primary_store)
):
    """Create an agent. ``active`` defaults to true."""
    agent_id = canonical_key(request.agent_id)
    if not agent_id:
        raise ValidationError("missing_fields", "agent_id is required")
    if primary.find_by_key("agents", agent_id) is not None:
        raise ConflictError("agent_exists", f"agent {agent_id} already exists")

    data = request.model_dump()
    data["agent_id"] = agent_id
    data["active"] = is_truthy(request.active, default=True)
    primary.insert("agents", data)
    return AgentResponse.model_validate(primary.find_by_key("agents", agent_id))


@router.post("/vehicles", response_model=VehicleResponse, status_code=201)
async def create_vehicle(
    request: VehicleCreate,
    primary: PrimaryStore = Depends(get_primary_store)
):
    """Register a vehicle for an existing customer. Plates are unique."""
    plate = canonical_key(request.plate)
    if not plate:
        raise ValidationError("missing_fields", "plate is required")
    plate = plate.upper()
    if primary.find_by_key("customers", request.customer_id) is None:
        raise ValidationError("customer_missing", f"customer {request.customer_id} does not exist")
    if primary.find_by_key("vehicles", plate) is not None:
        raise ConflictError("vehicle_exists", f"vehicle {plate} already exists")

    data = request.model_dump()
    data["plate"] = plate
    data["insured"] = is_truthy(request.insured, default=False)
    primary.insert("vehicles", data)
    return VehicleResponse.model_validate(primary.find_by_key("vehicles", plate))
