"""Appeal ORM model — escrow of a disputed extra-parts charge."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class AppealStatus(str, enum.Enum):
    open = "open"
    upheld = "upheld"
    denied = "denied"


class Appeal(Base):
    __tablename__ = "appeals"

    appeal_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, index=True)
    extra_parts_request_id = Column(
        String(36), ForeignKey("extra_parts_requests.request_id"), nullable=False, unique=True,
    )
    customer_id = Column(String(36), nullable=False)
    contractor_id = Column(String(36), nullable=False, index=True)
    reason = Column(String(1000), nullable=False)
    escrow_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(SAEnum(AppealStatus), nullable=False, default=AppealStatus.open)
    admin_response = Column(String(1000), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
