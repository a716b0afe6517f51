"""Pydantic schemas for the payment gate."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.models.booking import BookingStage
from app.schemas.booking import BookingOut


class SettleRequest(BaseModel):
    booking_id: str
    payer_id: str
    payment_method: str = "card"


class PaymentStatusOut(BaseModel):
    booking_id: str
    stage: BookingStage
    can_pay: bool
    pending_requests: int
    payable_total: float
    blocked_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class SettlementOut(BaseModel):
    settlement_id: str
    booking_id: str
    payer_id: str
    contractor_id: str
    base_amount: float
    extras_amount: float
    escrowed_amount: float
    total_amount: float
    payment_method: str
    payment_reference: str
    settled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettlementResultOut(BaseModel):
    booking: BookingOut
    settlement: SettlementOut
