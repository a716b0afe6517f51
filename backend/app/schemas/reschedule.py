"""Pydantic schemas for reschedule requests."""
from datetime import date, datetime, time
from typing import Optional
from pydantic import BaseModel

from app.models.reschedule import RequestedBy, RescheduleStatus


class RescheduleCreate(BaseModel):
    booking_id: str
    requested_by: str  # customer or contractor
    requester_id: str
    new_date: date
    new_time: time
    reason: Optional[str] = None


class RescheduleResolve(BaseModel):
    resolver_id: str
    decision: str  # approve or reject


class RescheduleOut(BaseModel):
    request_id: str
    booking_id: str
    requested_by: RequestedBy
    requester_id: str
    new_date: date
    new_time: time
    proposed_at_utc: datetime
    reason: Optional[str] = None
    status: RescheduleStatus
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
