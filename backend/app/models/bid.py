"""Bid ORM model — a contractor's priced offer against a booking."""
import uuid
import enum
from sqlalchemy import (
    Column, String, DateTime, Integer, Boolean, Numeric, JSON, ForeignKey, Index, CheckConstraint, text,
    Enum as SAEnum,
)
from sqlalchemy.sql import func
from app.database import Base


class BidStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    expired = "expired"


class Bid(Base):
    __tablename__ = "bids"

    bid_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, index=True)
    contractor_id = Column(String(36), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    included_items = Column(JSON, nullable=False, default=list)  # [{"name": str, "cost": float}]
    eta_minutes = Column(Integer, nullable=False)
    note = Column(String(1000), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(SAEnum(BidStatus), nullable=False, default=BidStatus.pending)
    bidding_round = Column(Integer, nullable=False, default=1)
    is_synthetic = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(String(500), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_bid_amount_positive"),
        CheckConstraint("eta_minutes > 0", name="check_bid_eta_positive"),
        # Last line of defence for the single-winner rule: one accepted bid per bidding round
        Index(
            "uq_bids_one_accepted_per_round",
            "booking_id",
            "bidding_round",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
        Index(
            "uq_bids_one_pending_per_contractor",
            "booking_id",
            "contractor_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
