"""Booking API routes — creation, reads, and the contractor status patch."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import bid_service, booking_service, extra_parts_service, reschedule_service
from app.services.events import EventPublisher, get_publisher
from app.schemas.bid import BidOut
from app.schemas.booking import BookingCancel, BookingCreate, BookingForfeit, BookingOut, MutationOut, StagePatch
from app.schemas.extra_parts import ExtraPartsOut
from app.schemas.reschedule import RescheduleOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Create a booking. ``auto_assign`` bookings come back already assigned."""
    return booking_service.create_booking(
        db=db,
        publisher=publisher,
        customer_id=payload.customer_id,
        service_category=payload.service_category,
        budget_min=payload.budget_min,
        budget_max=payload.budget_max,
        description=payload.description,
        address=payload.address,
        is_asap=payload.is_asap,
        scheduled_date=payload.scheduled_date,
        scheduled_time=payload.scheduled_time,
        tz_name=payload.timezone,
        assignment_mode=payload.assignment_mode,
        preferred_contractor_id=payload.preferred_contractor_id,
        agreed_amount=payload.agreed_amount,
    )


@router.get("/", response_model=list[BookingOut])
def list_bookings(
    customer_id: Optional[str] = None,
    contractor_id: Optional[str] = None,
    stage: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return booking_service.list_bookings(db, customer_id=customer_id, contractor_id=contractor_id, stage=stage)


@router.get("/open", response_model=list[BookingOut])
def list_open_bookings(
    service_category: Optional[str] = None,
    contractor_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """The open bidding pool, without bookings the contractor forfeited."""
    return booking_service.list_open_bookings(db, service_category=service_category, contractor_id=contractor_id)


@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    return booking_service.get_booking_or_404(db, booking_id)


@router.patch("/{booking_id}/status", response_model=BookingOut)
def patch_status(
    booking_id: str,
    payload: StagePatch,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Contractor moves the job forward (en route, started, in progress, completed).

    Rejections come back as ``{kind, message}`` with kind InvalidState,
    MissingEvidence, NotAssignedContractor, ValidationError or Conflict.
    """
    return booking_service.patch_stage(
        db=db,
        publisher=publisher,
        booking_id=booking_id,
        stage=payload.stage,
        contractor_id=payload.contractor_id,
        evidence=payload.evidence,
        eta=payload.eta,
        expected_version=payload.expected_version,
    )


@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(
    booking_id: str,
    payload: BookingCancel,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return booking_service.cancel_booking(db, publisher, booking_id, payload.customer_id, payload.reason)


@router.post("/{booking_id}/forfeit", response_model=BookingOut)
def forfeit_booking(
    booking_id: str,
    payload: BookingForfeit,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return booking_service.forfeit_booking(db, publisher, booking_id, payload.contractor_id, payload.reason)


@router.get("/{booking_id}/history", response_model=list[MutationOut])
def get_history(booking_id: str, db: Session = Depends(get_db)):
    """Mutation ledger for the booking, oldest first."""
    return booking_service.get_history(db, booking_id)


@router.get("/{booking_id}/bids", response_model=list[BidOut])
def list_booking_bids(
    booking_id: str,
    status_filter: Optional[str] = None,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Bids on the booking, cheapest first. Stale pending bids are expired first."""
    return bid_service.list_bids(db, publisher, booking_id, status=status_filter)


@router.get("/{booking_id}/extra-parts", response_model=list[ExtraPartsOut])
def list_booking_extra_parts(booking_id: str, status_filter: Optional[str] = None, db: Session = Depends(get_db)):
    return extra_parts_service.list_requests(db, booking_id, status=status_filter)


@router.get("/{booking_id}/reschedules", response_model=list[RescheduleOut])
def list_booking_reschedules(booking_id: str, status_filter: Optional[str] = None, db: Session = Depends(get_db)):
    return reschedule_service.list_requests(db, booking_id, status=status_filter)
