"""Appeal API routes — arbitration outcomes and contractor earnings."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import appeal_service
from app.services.events import EventPublisher, get_publisher
from app.schemas.appeal import AppealOut, AppealResolve, EarningsOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=list[AppealOut])
def list_appeals(
    booking_id: Optional[str] = None,
    contractor_id: Optional[str] = None,
    status_filter: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return appeal_service.list_appeals(db, booking_id=booking_id, contractor_id=contractor_id, status=status_filter)


@router.get("/earnings/{contractor_id}", response_model=EarningsOut)
def get_contractor_earnings(contractor_id: str, db: Session = Depends(get_db)):
    """Released earnings exclude escrow held by open appeals and refunded by upheld ones."""
    return EarningsOut.model_validate(appeal_service.contractor_earnings(db, contractor_id))


@router.get("/{appeal_id}", response_model=AppealOut)
def get_appeal(appeal_id: str, db: Session = Depends(get_db)):
    return appeal_service.get_appeal_or_404(db, appeal_id)


@router.post("/{appeal_id}/resolve", response_model=AppealOut)
def resolve_appeal(
    appeal_id: str,
    payload: AppealResolve,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Record the outcome of the external arbitration."""
    return appeal_service.resolve_appeal(db, publisher, appeal_id, payload.outcome, payload.admin_response)
