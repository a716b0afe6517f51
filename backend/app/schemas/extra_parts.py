"""Pydantic schemas for extra parts requests."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

from app.models.extra_parts import ExtraPartsStatus
from app.schemas.appeal import AppealOut


class ExtraPartsCreate(BaseModel):
    booking_id: str
    contractor_id: str
    part_name: str
    quantity: int = 1
    unit_price: Decimal
    total_price: Optional[Decimal] = None  # must equal quantity x unit_price when given
    justification: str
    photo_url: Optional[str] = None


class ExtraPartsResolve(BaseModel):
    customer_id: str
    decision: str  # approve, reject, disregard, pay_and_appeal
    appeal_reason: Optional[str] = None
    confirm: bool = False
    notes: Optional[str] = None


class ExtraPartsOut(BaseModel):
    request_id: str
    booking_id: str
    contractor_id: str
    part_name: str
    quantity: int
    unit_price: float
    total_price: float
    justification: str
    photo_url: Optional[str] = None
    status: ExtraPartsStatus
    resolved_by_customer_id: Optional[str] = None
    customer_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ExtraPartsResolutionOut(BaseModel):
    request: ExtraPartsOut
    appeal: Optional[AppealOut] = None
    requires_confirmation: bool = False
    warning: Optional[str] = None

    model_config = {"from_attributes": True}
