"""Bid API routes — submission, acceptance and rejection."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import bid_service
from app.services.events import EventPublisher, get_publisher
from app.schemas.bid import BidAccept, BidAcceptanceOut, BidCreate, BidOut, BidReject, ExpirySweepOut
from app.schemas.booking import BookingOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=BidOut, status_code=status.HTTP_201_CREATED)
def submit_bid(
    payload: BidCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Contractor bids on a booking that is seeking a contractor."""
    return bid_service.submit_bid(
        db=db,
        publisher=publisher,
        booking_id=payload.booking_id,
        contractor_id=payload.contractor_id,
        amount=payload.amount,
        eta_minutes=payload.eta_minutes,
        included_items=[item.model_dump() for item in payload.included_items],
        note=payload.note,
        expires_in_minutes=payload.expires_in_minutes,
    )


@router.get("/", response_model=list[BidOut])
def list_contractor_bids(contractor_id: str, status_filter: Optional[str] = None, db: Session = Depends(get_db)):
    return bid_service.list_contractor_bids(db, contractor_id, status=status_filter)


@router.post("/expire", response_model=ExpirySweepOut)
def expire_stale_bids(db: Session = Depends(get_db), publisher: EventPublisher = Depends(get_publisher)):
    """Run one expiry sweep now."""
    return {"expired_bid_ids": bid_service.expire_stale_bids(db, publisher)}


@router.get("/{bid_id}", response_model=BidOut)
def get_bid(bid_id: str, db: Session = Depends(get_db)):
    return bid_service.get_bid_or_404(db, bid_id)


@router.post("/{bid_id}/accept", response_model=BidAcceptanceOut)
def accept_bid(
    bid_id: str,
    payload: BidAccept,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Accept one bid: siblings are rejected and the booking is assigned, atomically.

    Fails with BidNoLongerAvailable if the bid was resolved, expired, or lost a race.
    """
    booking, bid = bid_service.accept_bid(db, publisher, bid_id, payload.customer_id)
    return BidAcceptanceOut(booking=BookingOut.model_validate(booking), winning_bid=BidOut.model_validate(bid))


@router.post("/{bid_id}/reject", response_model=BidOut)
def reject_bid(
    bid_id: str,
    payload: BidReject,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return bid_service.reject_bid(db, publisher, bid_id, payload.customer_id, payload.reason)
