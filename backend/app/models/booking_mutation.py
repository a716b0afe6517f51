"""BookingMutation ORM model — append-only ledger of committed booking transitions."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class ActionType(str, enum.Enum):
    create = "create"
    stage_change = "stage_change"
    assign = "assign"
    forfeit = "forfeit"
    cancel = "cancel"
    reschedule = "reschedule"
    extra_parts = "extra_parts"
    settle = "settle"


class BookingMutation(Base):
    __tablename__ = "booking_mutations"

    mutation_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, index=True)
    actor_id = Column(String(36), nullable=False)
    action_type = Column(SAEnum(ActionType), nullable=False)
    before_snapshot = Column(JSON, nullable=True)
    after_snapshot = Column(JSON, nullable=False)
    idempotency_key = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
