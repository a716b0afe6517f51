"""Payment gate API routes."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import NotFound
from app.services import payment_service
from app.services.events import EventPublisher, get_publisher
from app.services.payment_gateway import PaymentGateway, get_payment_gateway
from app.schemas.booking import BookingOut
from app.schemas.payment import PaymentStatusOut, SettleRequest, SettlementOut, SettlementResultOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{booking_id}/status", response_model=PaymentStatusOut)
def get_payment_status(booking_id: str, db: Session = Depends(get_db)):
    """What the checkout screen needs: can the customer pay, and if not, why."""
    return PaymentStatusOut.model_validate(payment_service.payment_status(db, booking_id))


@router.post("/settle", response_model=SettlementResultOut)
def settle_payment(
    payload: SettleRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Charge the payable total. Fails with PaymentBlocked while any extra parts request is pending
    and with PaymentDeclined when the gateway refuses the charge."""
    booking, settlement = payment_service.settle_payment(
        db, publisher, gateway, payload.booking_id, payload.payer_id, payload.payment_method,
    )
    return SettlementResultOut(
        booking=BookingOut.model_validate(booking),
        settlement=SettlementOut.model_validate(settlement),
    )


@router.get("/{booking_id}/settlement", response_model=SettlementOut)
def get_settlement(booking_id: str, db: Session = Depends(get_db)):
    settlement = payment_service.get_settlement(db, booking_id)
    if settlement is None:
        raise NotFound(f"Booking {booking_id} has not been settled")
    return settlement
