"""Payment gate — decides when a completed booking may be charged and settles it.

canPay  <=>  stage == awaiting_payment  AND  no pending extra parts request

settle_payment re-evaluates the gate against the row it compare-and-swaps, so
a request created after the customer opened checkout always blocks the charge.
Once paid, the charged total is read from the immutable PaymentSettlement row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.errors import Conflict, InvalidState, PaymentBlocked, PaymentDeclined, StaleVersion
from app.models.appeal import Appeal, AppealStatus
from app.models.booking import Booking, BookingStage
from app.models.booking_mutation import ActionType
from app.models.extra_parts import BILLABLE_STATUSES, ExtraPartsRequest, ExtraPartsStatus
from app.models.payment import PaymentSettlement
from app.services import booking_service, events, lifecycle
from app.services.booking_service import MAX_RETRY_ATTEMPTS, utcnow
from app.services.events import EventPublisher
from app.services.payment_gateway import PaymentGateway, PaymentGatewayError

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(ZERO)


@dataclass
class PayableBreakdown:
    base: Decimal
    extras: Decimal
    escrowed: Decimal

    @property
    def total(self) -> Decimal:
        return self.base + self.extras


@dataclass
class PaymentStatus:
    booking_id: str
    stage: BookingStage
    can_pay: bool
    pending_requests: int
    payable_total: Decimal
    blocked_reason: Optional[str] = None


def count_pending(db: Session, booking_id: str) -> int:
    return (
        db.query(func.count(ExtraPartsRequest.request_id))
        .filter(ExtraPartsRequest.booking_id == booking_id, ExtraPartsRequest.status == ExtraPartsStatus.pending)
        .scalar()
    )


def payable_breakdown(db: Session, booking: Booking) -> PayableBreakdown:
    """Base accepted amount plus billable extras raised by the current contractor."""
    settlement = get_settlement(db, booking.booking_id)
    if settlement is not None:
        return PayableBreakdown(settlement.base_amount, settlement.extras_amount, settlement.escrowed_amount)

    base = booking.accepted_amount or ZERO
    if not booking.contractor_id:
        return PayableBreakdown(_money(base), ZERO, ZERO)
    extras = (
        db.query(func.coalesce(func.sum(ExtraPartsRequest.total_price), 0))
        .filter(
            ExtraPartsRequest.booking_id == booking.booking_id,
            ExtraPartsRequest.contractor_id == booking.contractor_id,
            ExtraPartsRequest.status.in_(BILLABLE_STATUSES),
        )
        .scalar()
    )
    escrowed = (
        db.query(func.coalesce(func.sum(Appeal.escrow_amount), 0))
        .filter(
            Appeal.booking_id == booking.booking_id,
            Appeal.contractor_id == booking.contractor_id,
            Appeal.status == AppealStatus.open,
        )
        .scalar()
    )
    return PayableBreakdown(_money(base), _money(extras), _money(escrowed))


def get_settlement(db: Session, booking_id: str) -> Optional[PaymentSettlement]:
    return db.query(PaymentSettlement).filter(PaymentSettlement.booking_id == booking_id).first()


def _blocked_reason(booking: Booking, pending: int) -> Optional[str]:
    if booking.stage == BookingStage.paid:
        return "Booking is already paid"
    if booking.stage != BookingStage.awaiting_payment:
        return f"Booking is '{booking.stage.value}', not awaiting payment"
    if pending:
        return f"{pending} extra parts request(s) still awaiting your decision"
    return None


def can_pay(db: Session, booking_id: str) -> bool:
    booking = booking_service.get_booking_or_404(db, booking_id)
    return _blocked_reason(booking, count_pending(db, booking_id)) is None


def payment_status(db: Session, booking_id: str) -> PaymentStatus:
    booking = booking_service.get_booking_or_404(db, booking_id)
    pending = count_pending(db, booking_id)
    reason = _blocked_reason(booking, pending)
    return PaymentStatus(
        booking_id=booking_id,
        stage=booking.stage,
        can_pay=reason is None,
        pending_requests=pending,
        payable_total=payable_breakdown(db, booking).total,
        blocked_reason=reason,
    )


def settle_payment(
    db: Session,
    publisher: EventPublisher,
    gateway: PaymentGateway,
    booking_id: str,
    payer_id: str,
    payment_method: str = "card",
    now: Optional[datetime] = None,
) -> tuple[Booking, PaymentSettlement]:
    """Charge the payable total and move the booking to ``paid``.

    Re-settling an already paid booking by its payer returns the existing
    settlement without charging again.
    """
    now = now or utcnow()

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        booking = booking_service.get_booking_or_404(db, booking_id)
        lifecycle.require_customer(booking, payer_id)

        if booking.stage == BookingStage.paid:
            settlement = get_settlement(db, booking_id)
            if settlement is not None and settlement.payer_id == payer_id:
                return booking, settlement
            raise InvalidState(f"Booking {booking_id} is already paid")
        if booking.stage != BookingStage.awaiting_payment:
            raise InvalidState(f"Booking {booking_id} is '{booking.stage.value}', not awaiting payment")

        pending = count_pending(db, booking_id)
        if pending:
            raise PaymentBlocked(
                f"Booking {booking_id} has {pending} unresolved extra parts request(s); resolve them before paying"
            )

        breakdown = payable_breakdown(db, booking)
        contractor_id = booking.contractor_id
        before = booking_service.booking_snapshot(booking)
        try:
            booking_service.cas_update(db, booking, {
                "stage": BookingStage.paid,
                "final_amount": breakdown.total,
                "paid_at": now,
                "archived_at": now,
            }, now)
        except StaleVersion:
            logger.info("settle_payment retry for booking %s (attempt %d)", booking_id, attempt)
            db.expire_all()
            continue

        try:
            reference = gateway.charge(booking_id, payer_id, breakdown.total, payment_method)
        except PaymentGatewayError as exc:
            db.rollback()
            logger.warning("Gateway declined payment for booking %s: %s", booking_id, exc)
            raise PaymentDeclined(f"Payment was declined: {exc}")

        settlement = PaymentSettlement(
            booking_id=booking_id,
            payer_id=payer_id,
            contractor_id=contractor_id,
            base_amount=breakdown.base,
            extras_amount=breakdown.extras,
            escrowed_amount=breakdown.escrowed,
            total_amount=breakdown.total,
            payment_method=payment_method,
            payment_reference=reference,
            settled_at=now,
        )
        db.add(settlement)
        booking_service.record_mutation(
            db, booking_id, payer_id, ActionType.settle, before, booking_service.booking_snapshot(booking),
        )
        db.commit()
        db.refresh(booking)
        db.refresh(settlement)
        logger.info("Booking %s paid: %s (base %s, extras %s, escrowed %s)",
                    booking_id, breakdown.total, breakdown.base, breakdown.extras, breakdown.escrowed)

        publisher.publish(events.PAYMENT_SETTLED, {
            "booking_id": booking_id,
            "settlement_id": settlement.settlement_id,
            "total_amount": str(settlement.total_amount),
            "escrowed_amount": str(settlement.escrowed_amount),
        })
        booking_service.publish_stage_changes(
            publisher, booking, BookingStage.awaiting_payment, [BookingStage.paid],
        )
        return booking, settlement

    raise Conflict(f"Could not settle booking {booking_id} due to concurrent activity. Please try again.")
