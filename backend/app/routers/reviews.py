"""Review API routes — post-payment ratings and the contractor's rating summary."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import NotFound, ValidationError
from app.services import review_service
from app.services.events import EventPublisher, get_publisher
from app.schemas.review import (
    RatingSummaryOut, ReviewCreate, ReviewEligibilityOut, ReviewOut, ReviewResponseIn, ReviewUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=ReviewOut, status_code=status.HTTP_201_CREATED)
def create_review(
    payload: ReviewCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Rate a paid booking. One review per booking, by its customer only."""
    return review_service.create_review(
        db, publisher, payload.booking_id, payload.customer_id, payload.rating,
        review_text=payload.review_text,
        punctuality_rating=payload.punctuality_rating,
        quality_rating=payload.quality_rating,
        professionalism_rating=payload.professionalism_rating,
    )


@router.get("/", response_model=list[ReviewOut])
def list_reviews(
    contractor_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    limit: int = 10,
    db: Session = Depends(get_db),
):
    if contractor_id:
        return review_service.list_contractor_reviews(db, contractor_id, limit=limit)
    if customer_id:
        return review_service.list_customer_reviews(db, customer_id)
    raise ValidationError("Pass contractor_id or customer_id")


@router.get("/eligibility", response_model=ReviewEligibilityOut)
def review_eligibility(booking_id: str, customer_id: str, db: Session = Depends(get_db)):
    can_review, reason = review_service.review_eligibility(db, booking_id, customer_id)
    return ReviewEligibilityOut(booking_id=booking_id, can_review=can_review, reason=reason)


@router.get("/summary/{contractor_id}", response_model=RatingSummaryOut)
def get_rating_summary(contractor_id: str, db: Session = Depends(get_db)):
    return RatingSummaryOut.model_validate(review_service.rating_summary(db, contractor_id))


@router.get("/booking/{booking_id}", response_model=ReviewOut)
def get_booking_review(booking_id: str, db: Session = Depends(get_db)):
    review = review_service.get_review_by_booking(db, booking_id)
    if review is None:
        raise NotFound(f"Booking {booking_id} has no review yet")
    return review


@router.get("/{review_id}", response_model=ReviewOut)
def get_review(review_id: str, db: Session = Depends(get_db)):
    return review_service.get_review_or_404(db, review_id)


@router.patch("/{review_id}", response_model=ReviewOut)
def update_review(review_id: str, payload: ReviewUpdate, db: Session = Depends(get_db)):
    return review_service.update_review(
        db, review_id, payload.customer_id, **payload.model_dump(exclude={"customer_id"}, exclude_none=True),
    )


@router.post("/{review_id}/response", response_model=ReviewOut)
def respond_to_review(review_id: str, payload: ReviewResponseIn, db: Session = Depends(get_db)):
    """The reviewed contractor's public reply."""
    return review_service.respond_to_review(db, review_id, payload.contractor_id, payload.response)
