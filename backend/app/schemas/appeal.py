"""Pydantic schemas for Appeals and contractor earnings."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.models.appeal import AppealStatus


class AppealResolve(BaseModel):
    outcome: str  # upheld or denied
    admin_response: Optional[str] = None


class AppealOut(BaseModel):
    appeal_id: str
    booking_id: str
    extra_parts_request_id: str
    customer_id: str
    contractor_id: str
    reason: str
    escrow_amount: float
    status: AppealStatus
    admin_response: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EarningsOut(BaseModel):
    contractor_id: str
    paid_bookings: int
    gross: float
    escrow_held: float
    escrow_refunded: float
    platform_fee: float
    released: float

    model_config = {"from_attributes": True}
