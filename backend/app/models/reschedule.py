"""RescheduleRequest ORM model."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Date, Time, ForeignKey, Index, text, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class RequestedBy(str, enum.Enum):
    customer = "customer"
    contractor = "contractor"


class RescheduleStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    request_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, index=True)
    requested_by = Column(SAEnum(RequestedBy), nullable=False)
    requester_id = Column(String(36), nullable=False)
    new_date = Column(Date, nullable=False)
    new_time = Column(Time, nullable=False)
    proposed_at_utc = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String(1000), nullable=True)
    status = Column(SAEnum(RescheduleStatus), nullable=False, default=RescheduleStatus.pending)
    resolved_by = Column(String(36), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            "uq_reschedule_one_pending_per_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )
