"""Pydantic schemas for Bookings and their status patch."""
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field

from app.models.booking import AssignmentMode, BookingStage, ServiceCategory
from app.models.booking_mutation import ActionType


class BookingCreate(BaseModel):
    customer_id: str
    service_category: str  # aircon, plumbing, electrical, cleaning, painting
    description: Optional[str] = None
    address: Optional[str] = None
    budget_min: Decimal
    budget_max: Decimal
    is_asap: bool = False
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    timezone: Optional[str] = None  # IANA zone the date/time is local to
    assignment_mode: str = "open_bidding"
    preferred_contractor_id: Optional[str] = None
    agreed_amount: Optional[Decimal] = None


class StagePatch(BaseModel):
    stage: str
    contractor_id: Optional[str] = None
    evidence: list[str] = []
    eta: Optional[int] = None
    expected_version: Optional[int] = None


class BookingCancel(BaseModel):
    customer_id: str
    reason: Optional[str] = None


class BookingForfeit(BaseModel):
    contractor_id: str
    reason: Optional[str] = None


class BookingOut(BaseModel):
    booking_id: str
    customer_id: str
    service_category: ServiceCategory
    description: Optional[str] = None
    address: Optional[str] = None
    stage: BookingStage
    assignment_mode: AssignmentMode
    preferred_contractor_id: Optional[str] = None
    contractor_id: Optional[str] = None
    accepted_bid_id: Optional[str] = None
    bidding_round: int
    excluded_contractor_ids: list[str] = []
    budget_min: float
    budget_max: float
    accepted_amount: Optional[float] = None
    final_amount: Optional[float] = None
    is_asap: bool
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    timezone: str
    scheduled_at_utc: Optional[datetime] = None
    eta_minutes: Optional[int] = None
    eta_set_at: Optional[datetime] = None
    before_evidence: list[str] = Field(default_factory=list)
    progress_evidence: list[str] = Field(default_factory=list)
    after_evidence: list[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    forfeit_reason: Optional[str] = None
    forfeited_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MutationOut(BaseModel):
    mutation_id: str
    booking_id: str
    actor_id: str
    action_type: ActionType
    before_snapshot: Optional[dict[str, Any]] = None
    after_snapshot: dict[str, Any]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
