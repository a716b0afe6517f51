"""PaymentSettlement ORM model — immutable record of what a booking was charged."""
import uuid
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func
from app.database import Base


class PaymentSettlement(Base):
    __tablename__ = "payment_settlements"

    settlement_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, unique=True)
    payer_id = Column(String(36), nullable=False)
    contractor_id = Column(String(36), nullable=False, index=True)
    base_amount = Column(Numeric(10, 2), nullable=False)
    extras_amount = Column(Numeric(10, 2), nullable=False)
    escrowed_amount = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(30), nullable=False)
    payment_reference = Column(String(100), nullable=False)
    settled_at = Column(DateTime(timezone=True), server_default=func.now())
