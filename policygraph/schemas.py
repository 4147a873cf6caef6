"""
Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Union
from datetime import datetime, date

Key = Union[int, str]
Flag = Union[bool, str, int]


# Request schemas
class CustomerCreate(BaseModel):
    """Customer creation request."""
    customer_id: Key = Field(description="Customer identity key (numeric or string)")
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    active: Optional[Flag] = Field(None, description="Boolean or si/yes/true/1 style string")


class CustomerUpdate(BaseModel):
    """Partial customer update. Only the fields sent are applied."""
    model_config = ConfigDict(extra="forbid")

    customer_id: Optional[Key] = Field(None, description="Must match the path id if sent")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    active: Optional[Flag] = None


class AgentCreate(BaseModel):
    """Agent creation request."""
    agent_id: Key
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    active: Optional[Flag] = None


class VehicleCreate(BaseModel):
    """Vehicle creation request."""
    plate: str
    customer_id: Key
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = Field(None, gt=1900)
    insured: Optional[Flag] = None


class PolicyCreate(BaseModel):
    """Policy creation request. Dates accept YYYY-MM-DD or D/M/YYYY."""
    policy_number: str
    customer_id: Key
    agent_id: Key
    type: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    monthly_premium: Optional[float] = Field(None, ge=0)
    total_coverage: Optional[float] = Field(None, ge=0)
    status: Optional[str] = Field(None, description="Defaults to ACTIVE")


class ClaimCreate(BaseModel):
    """Claim creation request."""
    policy_number: str
    type: str
    date: Optional[str] = Field(None, description="YYYY-MM-DD or D/M/YYYY, defaults to today")
    amount_estimate: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    status: Optional[str] = Field(None, description="Defaults to Open")


# Response schemas
class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    customer_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    active: Optional[bool] = None
    sync_error: bool = False


class AgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    agent_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    active: Optional[bool] = None


class VehicleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plate: str
    customer_id: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    insured: Optional[bool] = None


class PolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    policy_number: str
    customer_id: str
    agent_id: str
    type: str
    start_date: date
    end_date: date
    monthly_premium: Optional[float] = None
    total_coverage: Optional[float] = None
    status: str
    sync_error: bool = False
    sync_error_detail: Optional[str] = None


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    claim_id: int
    policy_number: Optional[str] = None
    type: str
    amount_estimate: Optional[float] = None
    description: Optional[str] = None
    status: str
    claim_date: Optional[date] = None
    sync_error: bool = False
    sync_error_detail: Optional[str] = None


class DeactivationResponse(BaseModel):
    customer_id: str
    active: bool
    sync_status: str


class ReconciliationResponse(BaseModel):
    """Result of a reconciliation run."""
    processed: int
    skipped: int
    customers: int
    agents: int
    policies: int
    claims: int
    markers_cleared: int
    deferrals_resolved: int


class DeferralResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    collection: str
    entity_key: str
    mutation: str
    reason: str
    created_at: datetime
    resolved_at: Optional[datetime] = None


class ErrorResponse(BaseModel):
    error: str = Field(description="Stable machine-readable error code")
    detail: str


class DeferralList(BaseModel):
    items: List[DeferralResponse]
