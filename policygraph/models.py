"""
SQLModel database models for the primary (authoritative) store.
"""

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, date


class Customer(SQLModel, table=True):
    """Customer record. Deactivated by flipping ``active``, never deleted."""
    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: str = Field(unique=True, index=True)
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    active: Optional[bool] = Field(default=True)
    sync_error: bool = Field(default=False)
    sync_error_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Agent(SQLModel, table=True):
    """Agent managing policies."""
    id: Optional[int] = Field(default=None, primary_key=True)
    agent_id: str = Field(unique=True, index=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    active: Optional[bool] = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Policy(SQLModel, table=True):
    """Policy owned by a customer and managed by an agent."""
    id: Optional[int] = Field(default=None, primary_key=True)
    policy_number: str = Field(unique=True, index=True)
    customer_id: str = Field(index=True)
    agent_id: str = Field(index=True)
    type: str
    start_date: date = Field(index=True)
    end_date: date = Field(index=True)
    monthly_premium: Optional[float] = None
    total_coverage: Optional[float] = None
    status: str = Field(default="ACTIVE", index=True)
    sync_error: bool = Field(default=False)
    sync_error_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Claim(SQLModel, table=True):
    """
    Claim filed against a policy.

    ``policy_number`` is the business reference; ``policy_ref`` is the
    internal id of the policy row, used by older records.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    claim_id: int = Field(unique=True, index=True)
    policy_number: Optional[str] = Field(default=None, index=True)
    policy_ref: Optional[int] = Field(default=None, index=True)
    type: str = Field(index=True)
    amount_estimate: Optional[float] = None
    description: Optional[str] = None
    status: str = Field(default="Open", index=True)
    claim_date: Optional[date] = Field(default=None, index=True)
    sync_error: bool = Field(default=False)
    sync_error_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Vehicle(SQLModel, table=True):
    """Vehicle owned by a customer."""
    id: Optional[int] = Field(default=None, primary_key=True)
    plate: str = Field(unique=True, index=True)
    customer_id: str = Field(index=True)
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    insured: Optional[bool] = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Sequence(SQLModel, table=True):
    """Named atomic counter."""
    name: str = Field(primary_key=True)
    value: int


class SyncDeferral(SQLModel, table=True):
    """A derived write that did not happen; resolved by reconciliation."""
    id: Optional[int] = Field(default=None, primary_key=True)
    collection: str = Field(index=True)
    entity_key: str
    mutation: str
    reason: str
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    resolved_at: Optional[datetime] = Field(default=None, index=True)
