"""Pydantic schemas for Bids."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

from app.models.bid import BidStatus
from app.schemas.booking import BookingOut


class IncludedItem(BaseModel):
    name: str
    cost: Decimal = Decimal("0")


class BidCreate(BaseModel):
    booking_id: str
    contractor_id: str
    amount: Decimal
    included_items: list[IncludedItem] = []
    eta_minutes: int
    note: Optional[str] = None
    expires_in_minutes: Optional[int] = None  # defaults to BID_EXPIRY_MINUTES


class BidAccept(BaseModel):
    customer_id: str


class BidReject(BaseModel):
    customer_id: str
    reason: Optional[str] = None


class IncludedItemOut(BaseModel):
    name: str
    cost: float


class BidOut(BaseModel):
    bid_id: str
    booking_id: str
    contractor_id: str
    amount: float
    included_items: list[IncludedItemOut] = []
    eta_minutes: int
    note: Optional[str] = None
    expires_at: datetime
    status: BidStatus
    bidding_round: int
    is_synthetic: bool
    rejection_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BidAcceptanceOut(BaseModel):
    booking: BookingOut
    winning_bid: BidOut


class ExpirySweepOut(BaseModel):
    expired_bid_ids: list[str]
