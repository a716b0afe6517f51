"""Extra parts API routes — the change request gate."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import extra_parts_service
from app.services.events import EventPublisher, get_publisher
from app.schemas.extra_parts import ExtraPartsCreate, ExtraPartsOut, ExtraPartsResolutionOut, ExtraPartsResolve

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=ExtraPartsOut, status_code=status.HTTP_201_CREATED)
def create_extra_parts_request(
    payload: ExtraPartsCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Assigned contractor raises a billable part for the customer to decide on."""
    return extra_parts_service.create_request(
        db=db,
        publisher=publisher,
        booking_id=payload.booking_id,
        contractor_id=payload.contractor_id,
        part_name=payload.part_name,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        justification=payload.justification,
        total_price=payload.total_price,
        photo_url=payload.photo_url,
    )


@router.get("/{request_id}", response_model=ExtraPartsOut)
def get_extra_parts_request(request_id: str, db: Session = Depends(get_db)):
    return extra_parts_service.get_request_or_404(db, request_id)


@router.post("/{request_id}/resolve", response_model=ExtraPartsResolutionOut)
def resolve_extra_parts_request(
    request_id: str,
    payload: ExtraPartsResolve,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Customer decides: approve, reject, disregard or pay_and_appeal.

    ``disregard`` without ``confirm`` changes nothing and returns
    ``requires_confirmation`` with a warning to show the customer.
    """
    result = extra_parts_service.resolve_request(
        db=db,
        publisher=publisher,
        request_id=request_id,
        customer_id=payload.customer_id,
        decision=payload.decision,
        appeal_reason=payload.appeal_reason,
        confirm=payload.confirm,
        notes=payload.notes,
    )
    return ExtraPartsResolutionOut.model_validate(result)
