"""Change request gate — extra parts raised mid-job and the customer's decision on each.

Both creating and resolving a request bump the booking's version inside the same
transaction, so a settlement that read the booking earlier loses its
compare-and-swap and re-checks the gate.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.errors import Conflict, InvalidState, NotFound, ValidationError
from app.models.appeal import Appeal, AppealStatus
from app.models.booking import Booking
from app.models.booking_mutation import ActionType
from app.models.extra_parts import (
    DECISION_TO_STATUS, ExtraPartsDecision, ExtraPartsRequest, ExtraPartsStatus,
)
from app.services import booking_service, events, lifecycle
from app.services.booking_service import utcnow
from app.services.events import EventPublisher

logger = logging.getLogger(__name__)

DISREGARD_WARNING = (
    "Disregarding this part means you will not pay for it and the contractor will "
    "proceed without it. They may be unable to complete the job as planned. "
    "Re-submit with confirm=true to proceed."
)


@dataclass
class Resolution:
    request: ExtraPartsRequest
    appeal: Optional[Appeal] = None
    requires_confirmation: bool = False
    warning: Optional[str] = None


def get_request_or_404(db: Session, request_id: str) -> ExtraPartsRequest:
    req = db.query(ExtraPartsRequest).filter(ExtraPartsRequest.request_id == request_id).first()
    if not req:
        raise NotFound(f"Extra parts request {request_id} not found")
    return req


def list_requests(db: Session, booking_id: str, status: Optional[str] = None) -> list[ExtraPartsRequest]:
    booking_service.get_booking_or_404(db, booking_id)
    query = db.query(ExtraPartsRequest).filter(ExtraPartsRequest.booking_id == booking_id)
    if status:
        try:
            query = query.filter(ExtraPartsRequest.status == ExtraPartsStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown extra parts status: {status}")
    return query.order_by(ExtraPartsRequest.created_at).all()


def create_request(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    contractor_id: str,
    part_name: str,
    quantity: int,
    unit_price: Decimal,
    justification: str,
    total_price: Optional[Decimal] = None,
    photo_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExtraPartsRequest:
    """Assigned contractor asks the customer to approve an additional billable part."""
    now = now or utcnow()
    if not part_name or not part_name.strip():
        raise ValidationError("part_name is required")
    if not justification or not justification.strip():
        raise ValidationError("A justification is required")
    if quantity is None or quantity < 1:
        raise ValidationError("quantity must be at least 1")
    if unit_price is None or unit_price <= 0:
        raise ValidationError("unit_price must be positive")
    computed = (Decimal(quantity) * unit_price).quantize(Decimal("0.01"))
    if total_price is not None and total_price.quantize(Decimal("0.01")) != computed:
        raise ValidationError(f"total_price {total_price} does not equal quantity x unit_price ({computed})")

    booking = booking_service.get_booking_or_404(db, booking_id)
    lifecycle.require_assigned_contractor(booking, contractor_id)
    booking_service.require_open_stage(booking, lifecycle.EXTRA_PARTS_STAGES, "request extra parts")

    before = booking_service.booking_snapshot(booking)
    if not booking_service.touch_booking(
        db, booking_id,
        Booking.stage.in_(list(lifecycle.EXTRA_PARTS_STAGES)),
        Booking.contractor_id == contractor_id,
        now=now,
    ):
        db.rollback()
        raise InvalidState(f"Booking {booking_id} no longer accepts extra parts requests")

    req = ExtraPartsRequest(
        booking_id=booking_id,
        contractor_id=contractor_id,
        part_name=part_name.strip(),
        quantity=quantity,
        unit_price=unit_price,
        total_price=computed,
        justification=justification.strip(),
        photo_url=photo_url,
        status=ExtraPartsStatus.pending,
    )
    db.add(req)
    db.flush()
    db.refresh(booking)
    booking_service.record_mutation(
        db, booking_id, contractor_id, ActionType.extra_parts, before, booking_service.booking_snapshot(booking),
    )
    db.commit()
    db.refresh(req)
    logger.info("Extra parts request %s on booking %s: %s x%d = %s", req.request_id, booking_id, req.part_name, quantity, computed)

    publisher.publish(events.EXTRA_PARTS_REQUESTED, {
        "booking_id": booking_id,
        "request_id": req.request_id,
        "part_name": req.part_name,
        "total_price": str(req.total_price),
    })
    return req


def resolve_request(
    db: Session,
    publisher: EventPublisher,
    request_id: str,
    customer_id: str,
    decision: str,
    appeal_reason: Optional[str] = None,
    confirm: bool = False,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Resolution:
    """Customer resolves a pending request exactly once.

    ``disregard`` is two-phase: without ``confirm`` nothing changes and the
    caller gets a warning to show. ``pay_and_appeal`` opens an Appeal escrowing
    the request's total.
    """
    now = now or utcnow()
    try:
        choice = ExtraPartsDecision(decision)
    except ValueError:
        raise ValidationError(f"Unknown decision: {decision}")
    target_status = DECISION_TO_STATUS[choice]

    req = get_request_or_404(db, request_id)
    booking = booking_service.get_booking_or_404(db, req.booking_id)
    lifecycle.require_customer(booking, customer_id)

    if req.status != ExtraPartsStatus.pending:
        if req.status == target_status:
            appeal = db.query(Appeal).filter(Appeal.extra_parts_request_id == request_id).first()
            return Resolution(request=req, appeal=appeal)
        raise InvalidState(f"Extra parts request {request_id} is already {req.status.value}")
    if booking.stage in lifecycle.TERMINAL_STAGES:
        raise InvalidState(f"Booking {booking.booking_id} is '{booking.stage.value}'; requests can no longer change")

    if choice == ExtraPartsDecision.disregard and not confirm:
        return Resolution(request=req, requires_confirmation=True, warning=DISREGARD_WARNING)
    if choice == ExtraPartsDecision.pay_and_appeal and not (appeal_reason and appeal_reason.strip()):
        raise ValidationError("appeal_reason is required for pay_and_appeal")

    before = booking_service.booking_snapshot(booking)
    if not booking_service.touch_booking(
        db, booking.booking_id, Booking.stage.notin_(list(lifecycle.TERMINAL_STAGES)), now=now,
    ):
        db.rollback()
        raise InvalidState(f"Booking {booking.booking_id} was settled or cancelled")

    changed = db.execute(
        update(ExtraPartsRequest)
        .where(ExtraPartsRequest.request_id == request_id, ExtraPartsRequest.status == ExtraPartsStatus.pending)
        .values(status=target_status, resolved_by_customer_id=customer_id, customer_notes=notes, resolved_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if changed != 1:
        db.rollback()
        raise Conflict(f"Extra parts request {request_id} was resolved concurrently")

    appeal = None
    if choice == ExtraPartsDecision.pay_and_appeal:
        appeal = Appeal(
            booking_id=booking.booking_id,
            extra_parts_request_id=request_id,
            customer_id=customer_id,
            contractor_id=req.contractor_id,
            reason=appeal_reason.strip(),
            escrow_amount=req.total_price,
            status=AppealStatus.open,
        )
        db.add(appeal)
        db.flush()

    db.refresh(booking)
    booking_service.record_mutation(
        db, booking.booking_id, customer_id, ActionType.extra_parts, before, booking_service.booking_snapshot(booking),
    )
    db.commit()
    db.refresh(req)
    if appeal is not None:
        db.refresh(appeal)
    logger.info("Extra parts request %s resolved as %s by customer %s", request_id, target_status.value, customer_id)

    publisher.publish(events.EXTRA_PARTS_RESOLVED, {
        "booking_id": booking.booking_id,
        "request_id": request_id,
        "decision": choice.value,
        "status": target_status.value,
        "total_price": str(req.total_price),
    })
    if appeal is not None:
        publisher.publish(events.APPEAL_OPENED, {
            "booking_id": booking.booking_id,
            "appeal_id": appeal.appeal_id,
            "request_id": request_id,
            "escrow_amount": str(appeal.escrow_amount),
        })
    return Resolution(request=req, appeal=appeal)
