"""Reschedule API routes."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import reschedule_service
from app.services.events import EventPublisher, get_publisher
from app.schemas.reschedule import RescheduleCreate, RescheduleOut, RescheduleResolve

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=RescheduleOut, status_code=status.HTTP_201_CREATED)
def create_reschedule_request(
    payload: RescheduleCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Propose a new slot. The date and time are local to the booking's timezone."""
    return reschedule_service.create_request(
        db=db,
        publisher=publisher,
        booking_id=payload.booking_id,
        requested_by=payload.requested_by,
        requester_id=payload.requester_id,
        new_date=payload.new_date,
        new_time=payload.new_time,
        reason=payload.reason,
    )


@router.get("/{request_id}", response_model=RescheduleOut)
def get_reschedule_request(request_id: str, db: Session = Depends(get_db)):
    return reschedule_service.get_request_or_404(db, request_id)


@router.post("/{request_id}/resolve", response_model=RescheduleOut)
def resolve_reschedule_request(
    request_id: str,
    payload: RescheduleResolve,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return reschedule_service.resolve_request(db, publisher, request_id, payload.resolver_id, payload.decision)
