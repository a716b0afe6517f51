"""ExtraPartsRequest ORM model — mid-job billable material awaiting customer decision."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Integer, Numeric, ForeignKey, CheckConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class ExtraPartsStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    disregarded = "disregarded"
    pay_and_appeal = "pay_and_appeal"


class ExtraPartsDecision(str, enum.Enum):
    approve = "approve"
    reject = "reject"
    disregard = "disregard"
    pay_and_appeal = "pay_and_appeal"


DECISION_TO_STATUS = {
    ExtraPartsDecision.approve: ExtraPartsStatus.approved,
    ExtraPartsDecision.reject: ExtraPartsStatus.rejected,
    ExtraPartsDecision.disregard: ExtraPartsStatus.disregarded,
    ExtraPartsDecision.pay_and_appeal: ExtraPartsStatus.pay_and_appeal,
}

# Statuses whose total_price is charged to the customer
BILLABLE_STATUSES = (ExtraPartsStatus.approved, ExtraPartsStatus.pay_and_appeal)


class ExtraPartsRequest(Base):
    __tablename__ = "extra_parts_requests"

    request_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, index=True)
    contractor_id = Column(String(36), nullable=False)
    part_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    justification = Column(String(1000), nullable=False)
    photo_url = Column(String(1000), nullable=True)
    status = Column(SAEnum(ExtraPartsStatus), nullable=False, default=ExtraPartsStatus.pending)
    resolved_by_customer_id = Column(String(36), nullable=True)
    customer_notes = Column(String(1000), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_extra_parts_quantity_positive"),
        CheckConstraint("unit_price > 0", name="check_extra_parts_unit_price_positive"),
    )
