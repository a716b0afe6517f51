"""Review ORM model — a customer's rating of a paid job."""
import uuid
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from app.database import Base


class Review(Base):
    __tablename__ = "reviews"

    review_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.booking_id"), nullable=False, unique=True)
    customer_id = Column(String(36), nullable=False, index=True)
    contractor_id = Column(String(36), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    punctuality_rating = Column(Integer, nullable=True)
    quality_rating = Column(Integer, nullable=True)
    professionalism_rating = Column(Integer, nullable=True)
    review_text = Column(String(2000), nullable=True)
    contractor_response = Column(String(2000), nullable=True)
    contractor_response_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="check_review_rating_range"),
        CheckConstraint(
            "punctuality_rating IS NULL OR punctuality_rating BETWEEN 1 AND 5",
            name="check_review_punctuality_range",
        ),
        CheckConstraint(
            "quality_rating IS NULL OR quality_rating BETWEEN 1 AND 5",
            name="check_review_quality_range",
        ),
        CheckConstraint(
            "professionalism_rating IS NULL OR professionalism_rating BETWEEN 1 AND 5",
            name="check_review_professionalism_range",
        ),
    )
