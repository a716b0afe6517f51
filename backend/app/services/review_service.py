"""Post-payment reviews: a customer rates a paid job once, the contractor may reply.

Reviews never touch the booking row. Eligibility is read from the booking's
stage, so a review can only exist once the booking has reached ``paid``.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import Conflict, InvalidState, NotAssignedContractor, NotBookingCustomer, NotFound, ValidationError
from app.models.booking import Booking, BookingStage
from app.models.review import Review
from app.services import booking_service, events, lifecycle
from app.services.booking_service import utcnow
from app.services.events import EventPublisher

logger = logging.getLogger(__name__)

SUB_RATINGS = ("punctuality_rating", "quality_rating", "professionalism_rating")


@dataclass
class RatingSummary:
    contractor_id: str
    total_reviews: int
    average_rating: float
    average_punctuality: float
    average_quality: float
    average_professionalism: float
    rating_distribution: dict[int, int] = field(default_factory=lambda: {n: 0 for n in range(1, 6)})


def _check_rating(name: str, value: Optional[int], required: bool = False) -> None:
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return
    if not 1 <= value <= 5:
        raise ValidationError(f"{name} must be between 1 and 5, got {value}")


def get_review_or_404(db: Session, review_id: str) -> Review:
    review = db.query(Review).filter(Review.review_id == review_id).first()
    if not review:
        raise NotFound(f"Review {review_id} not found")
    return review


def get_review_by_booking(db: Session, booking_id: str) -> Optional[Review]:
    booking_service.get_booking_or_404(db, booking_id)
    return db.query(Review).filter(Review.booking_id == booking_id).first()


def _ineligibility(db: Session, booking: Booking, customer_id: str) -> Optional[str]:
    if customer_id != booking.customer_id:
        return "This booking does not belong to you"
    if booking.stage != BookingStage.paid:
        return "Only paid bookings can be reviewed"
    if db.query(Review.review_id).filter(Review.booking_id == booking.booking_id).first():
        return "You have already reviewed this booking"
    return None


def review_eligibility(db: Session, booking_id: str, customer_id: str) -> tuple[bool, Optional[str]]:
    """``(can_review, reason)`` for the post-payment review prompt."""
    booking = booking_service.get_booking_or_404(db, booking_id)
    reason = _ineligibility(db, booking, customer_id)
    return reason is None, reason


def create_review(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    customer_id: str,
    rating: int,
    review_text: Optional[str] = None,
    punctuality_rating: Optional[int] = None,
    quality_rating: Optional[int] = None,
    professionalism_rating: Optional[int] = None,
) -> Review:
    _check_rating("rating", rating, required=True)
    _check_rating("punctuality_rating", punctuality_rating)
    _check_rating("quality_rating", quality_rating)
    _check_rating("professionalism_rating", professionalism_rating)

    booking = booking_service.get_booking_or_404(db, booking_id)
    lifecycle.require_customer(booking, customer_id)
    if booking.stage != BookingStage.paid:
        raise InvalidState(f"Booking {booking_id} can only be reviewed once paid (stage '{booking.stage.value}')")
    if db.query(Review.review_id).filter(Review.booking_id == booking_id).first():
        raise Conflict(f"Booking {booking_id} has already been reviewed")

    review = Review(
        booking_id=booking_id,
        customer_id=customer_id,
        contractor_id=booking.contractor_id,
        rating=rating,
        punctuality_rating=punctuality_rating,
        quality_rating=quality_rating,
        professionalism_rating=professionalism_rating,
        review_text=(review_text or "").strip() or None,
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"Booking {booking_id} has already been reviewed")
    db.refresh(review)
    logger.info("Review %s on booking %s: %d stars for contractor %s",
                review.review_id, booking_id, rating, review.contractor_id)

    publisher.publish(events.REVIEW_SUBMITTED, {
        "booking_id": booking_id,
        "review_id": review.review_id,
        "contractor_id": review.contractor_id,
        "rating": rating,
    })
    return review


def update_review(db: Session, review_id: str, customer_id: str, **updates) -> Review:
    """Edit a review's ratings or text. Only its author may do so."""
    review = get_review_or_404(db, review_id)
    if review.customer_id != customer_id:
        raise NotBookingCustomer(f"User {customer_id} did not write review {review_id}")

    changes = {k: v for k, v in updates.items() if v is not None}
    unknown = set(changes) - {"rating", "review_text", *SUB_RATINGS}
    if unknown:
        raise ValidationError(f"Cannot update review fields: {', '.join(sorted(unknown))}")
    for name in ("rating", *SUB_RATINGS):
        _check_rating(name, changes.get(name))
    if not changes:
        return review

    for name, value in changes.items():
        setattr(review, name, value)
    db.commit()
    db.refresh(review)
    logger.info("Review %s updated (%s)", review_id, ", ".join(sorted(changes)))
    return review


def respond_to_review(
    db: Session, review_id: str, contractor_id: str, response: str, now: Optional[datetime] = None,
) -> Review:
    review = get_review_or_404(db, review_id)
    if review.contractor_id != contractor_id:
        raise NotAssignedContractor(f"Contractor {contractor_id} cannot respond to review {review_id}")
    response = (response or "").strip()
    if not response:
        raise ValidationError("A response needs some text")

    review.contractor_response = response
    review.contractor_response_at = now or utcnow()
    db.commit()
    db.refresh(review)
    return review


def list_contractor_reviews(db: Session, contractor_id: str, limit: int = 10) -> list[Review]:
    return (
        db.query(Review)
        .filter(Review.contractor_id == contractor_id)
        .order_by(Review.created_at.desc())
        .limit(limit)
        .all()
    )


def list_customer_reviews(db: Session, customer_id: str) -> list[Review]:
    return db.query(Review).filter(Review.customer_id == customer_id).order_by(Review.created_at.desc()).all()


def _average(values: list[int]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def rating_summary(db: Session, contractor_id: str) -> RatingSummary:
    """Average stars and distribution across every review of a contractor.

    Each sub-rating is averaged over the reviews that gave one.
    """
    reviews = db.query(Review).filter(Review.contractor_id == contractor_id).all()
    summary = RatingSummary(
        contractor_id=contractor_id,
        total_reviews=len(reviews),
        average_rating=_average([r.rating for r in reviews]),
        average_punctuality=_average([r.punctuality_rating for r in reviews if r.punctuality_rating]),
        average_quality=_average([r.quality_rating for r in reviews if r.quality_rating]),
        average_professionalism=_average([r.professionalism_rating for r in reviews if r.professionalism_rating]),
    )
    for r in reviews:
        summary.rating_distribution[r.rating] += 1
    return summary
