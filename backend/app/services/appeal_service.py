"""Appeals on disputed extra parts, and the contractor earnings they hold back."""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import Conflict, InvalidState, NotFound, ValidationError
from app.models.appeal import Appeal, AppealStatus
from app.models.payment import PaymentSettlement
from app.services import events
from app.services.booking_service import utcnow
from app.services.events import EventPublisher

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class EarningsSummary:
    contractor_id: str
    paid_bookings: int
    gross: Decimal
    escrow_held: Decimal
    escrow_refunded: Decimal
    platform_fee: Decimal
    released: Decimal


def get_appeal_or_404(db: Session, appeal_id: str) -> Appeal:
    appeal = db.query(Appeal).filter(Appeal.appeal_id == appeal_id).first()
    if not appeal:
        raise NotFound(f"Appeal {appeal_id} not found")
    return appeal


def list_appeals(
    db: Session,
    booking_id: Optional[str] = None,
    contractor_id: Optional[str] = None,
    status: Optional[str] = None,
) -> list[Appeal]:
    query = db.query(Appeal)
    if booking_id:
        query = query.filter(Appeal.booking_id == booking_id)
    if contractor_id:
        query = query.filter(Appeal.contractor_id == contractor_id)
    if status:
        try:
            query = query.filter(Appeal.status == AppealStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown appeal status: {status}")
    return query.order_by(Appeal.created_at.desc()).all()


def resolve_appeal(
    db: Session,
    publisher: EventPublisher,
    appeal_id: str,
    outcome: str,
    admin_response: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Appeal:
    """Record the arbitration outcome. ``upheld`` refunds the escrow to the customer."""
    now = now or utcnow()
    try:
        target = AppealStatus(outcome)
    except ValueError:
        raise ValidationError(f"outcome must be 'upheld' or 'denied', got {outcome!r}")
    if target == AppealStatus.open:
        raise ValidationError("outcome must be 'upheld' or 'denied'")

    appeal = get_appeal_or_404(db, appeal_id)
    if appeal.status != AppealStatus.open:
        if appeal.status == target:
            return appeal
        raise InvalidState(f"Appeal {appeal_id} is already {appeal.status.value}")

    changed = db.execute(
        update(Appeal)
        .where(Appeal.appeal_id == appeal_id, Appeal.status == AppealStatus.open)
        .values(status=target, admin_response=admin_response, resolved_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if changed != 1:
        db.rollback()
        raise Conflict(f"Appeal {appeal_id} was resolved concurrently")
    db.commit()
    db.refresh(appeal)
    logger.info("Appeal %s on booking %s %s", appeal_id, appeal.booking_id, target.value)

    publisher.publish(events.APPEAL_RESOLVED, {
        "booking_id": appeal.booking_id,
        "appeal_id": appeal_id,
        "status": target.value,
        "escrow_amount": str(appeal.escrow_amount),
    })
    return appeal


def contractor_earnings(db: Session, contractor_id: str) -> EarningsSummary:
    """Gross settled for a contractor's paid jobs and how much of it is released."""
    settlements = db.query(PaymentSettlement).filter(PaymentSettlement.contractor_id == contractor_id).all()
    paid_ids = {s.booking_id for s in settlements}
    gross = sum((Decimal(s.total_amount) for s in settlements), Decimal("0"))

    held = refunded = Decimal("0")
    if paid_ids:
        appeals = (
            db.query(Appeal)
            .filter(Appeal.contractor_id == contractor_id, Appeal.booking_id.in_(paid_ids))
            .all()
        )
        for appeal in appeals:
            if appeal.status == AppealStatus.open:
                held += Decimal(appeal.escrow_amount)
            elif appeal.status == AppealStatus.upheld:
                refunded += Decimal(appeal.escrow_amount)

    net = gross - held - refunded
    fee = (net * Decimal(str(settings.PLATFORM_FEE_RATE))).quantize(CENT)
    return EarningsSummary(
        contractor_id=contractor_id,
        paid_bookings=len(settlements),
        gross=gross.quantize(CENT),
        escrow_held=held.quantize(CENT),
        escrow_refunded=refunded.quantize(CENT),
        platform_fee=fee,
        released=(net - fee).quantize(CENT),
    )
