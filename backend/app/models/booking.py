"""Booking ORM model — the single authoritative record of a job."""
import uuid
import enum
from sqlalchemy import (
    Column, String, DateTime, Date, Time, Integer, Boolean, Numeric, JSON, CheckConstraint, Index,
    Enum as SAEnum,
)
from sqlalchemy.sql import func
from app.database import Base


class ServiceCategory(str, enum.Enum):
    aircon = "aircon"
    plumbing = "plumbing"
    electrical = "electrical"
    cleaning = "cleaning"
    painting = "painting"


class BookingStage(str, enum.Enum):
    """Lifecycle stages. Values are persisted and transmitted verbatim."""

    seeking_contractor = "seeking_contractor"
    assigned = "assigned"
    contractor_en_route = "contractor_en_route"
    work_started = "work_started"
    work_in_progress = "work_in_progress"
    work_completed = "work_completed"
    awaiting_payment = "awaiting_payment"
    paid = "paid"
    cancelled = "cancelled"
    forfeited = "forfeited"


class AssignmentMode(str, enum.Enum):
    open_bidding = "open_bidding"
    auto_assign = "auto_assign"


class Booking(Base):
    __tablename__ = "bookings"

    booking_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(String(36), nullable=False, index=True)
    service_category = Column(SAEnum(ServiceCategory), nullable=False)
    description = Column(String(1000), nullable=True)
    address = Column(String(500), nullable=True)

    stage = Column(SAEnum(BookingStage), nullable=False, default=BookingStage.seeking_contractor)
    assignment_mode = Column(SAEnum(AssignmentMode), nullable=False, default=AssignmentMode.open_bidding)
    preferred_contractor_id = Column(String(36), nullable=True)

    # Assignment: written only through the booking store's CAS commit
    contractor_id = Column(String(36), nullable=True, index=True)
    accepted_bid_id = Column(String(36), nullable=True)
    bidding_round = Column(Integer, nullable=False, default=1)
    excluded_contractor_ids = Column(JSON, nullable=False, default=list)

    # Price
    budget_min = Column(Numeric(10, 2), nullable=False)
    budget_max = Column(Numeric(10, 2), nullable=False)
    accepted_amount = Column(Numeric(10, 2), nullable=True)
    final_amount = Column(Numeric(10, 2), nullable=True)

    # Schedule (local wall-clock + zone, plus the resolved UTC instant)
    is_asap = Column(Boolean, nullable=False, default=False)
    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(Time, nullable=True)
    timezone = Column(String(50), nullable=False, default="UTC")
    scheduled_at_utc = Column(DateTime(timezone=True), nullable=True)

    # Work progress
    eta_minutes = Column(Integer, nullable=True)
    eta_set_at = Column(DateTime(timezone=True), nullable=True)
    before_evidence = Column(JSON, nullable=False, default=list)
    progress_evidence = Column(JSON, nullable=False, default=list)
    after_evidence = Column(JSON, nullable=False, default=list)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Exits
    forfeit_reason = Column(String(500), nullable=True)
    forfeited_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("budget_min > 0", name="check_booking_budget_min_positive"),
        CheckConstraint("budget_max >= budget_min", name="check_booking_budget_range"),
        Index("ix_bookings_stage_category", "stage", "service_category"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.booking_id}, stage={self.stage}, contractor={self.contractor_id}, v{self.version})>"
