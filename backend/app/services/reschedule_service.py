"""Reschedule negotiation between a booking's customer and its assigned contractor.

Either side proposes a new slot; the other side approves or rejects it. Approval
changes only the booking's schedule fields. While no contractor is assigned there
is nobody to negotiate with, so a customer's proposal applies immediately.
"""
import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import Conflict, InvalidState, NotFound, ValidationError
from app.models.booking import Booking
from app.models.booking_mutation import ActionType
from app.models.reschedule import RequestedBy, RescheduleRequest, RescheduleStatus
from app.services import booking_service, events, lifecycle
from app.services.booking_service import as_utc, utcnow
from app.services.events import EventPublisher

logger = logging.getLogger(__name__)

_DECISIONS = {"approve": RescheduleStatus.approved, "reject": RescheduleStatus.rejected}


def get_request_or_404(db: Session, request_id: str) -> RescheduleRequest:
    req = db.query(RescheduleRequest).filter(RescheduleRequest.request_id == request_id).first()
    if not req:
        raise NotFound(f"Reschedule request {request_id} not found")
    return req


def list_requests(db: Session, booking_id: str, status: Optional[str] = None) -> list[RescheduleRequest]:
    booking_service.get_booking_or_404(db, booking_id)
    query = db.query(RescheduleRequest).filter(RescheduleRequest.booking_id == booking_id)
    if status:
        try:
            query = query.filter(RescheduleRequest.status == RescheduleStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown reschedule status: {status}")
    return query.order_by(RescheduleRequest.created_at).all()


def _check_party(booking: Booking, requested_by: RequestedBy, user_id: str) -> None:
    if requested_by == RequestedBy.customer:
        lifecycle.require_customer(booking, user_id)
    else:
        lifecycle.require_assigned_contractor(booking, user_id)


def _apply_schedule(
    db: Session, booking: Booking, req: RescheduleRequest, actor_id: str, now: datetime,
) -> None:
    before = booking_service.booking_snapshot(booking)
    booking_service.cas_update(db, booking, {
        "is_asap": False,
        "scheduled_date": req.new_date,
        "scheduled_time": req.new_time,
        "scheduled_at_utc": req.proposed_at_utc,
    }, now)
    booking_service.record_mutation(
        db, booking.booking_id, actor_id, ActionType.reschedule, before, booking_service.booking_snapshot(booking),
    )


def create_request(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    requested_by: str,
    requester_id: str,
    new_date: date,
    new_time: time,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RescheduleRequest:
    now = now or utcnow()
    try:
        side = RequestedBy(requested_by)
    except ValueError:
        raise ValidationError(f"requested_by must be 'customer' or 'contractor', got {requested_by!r}")

    booking = booking_service.get_booking_or_404(db, booking_id)
    _check_party(booking, side, requester_id)
    booking_service.require_open_stage(booking, lifecycle.RESCHEDULE_STAGES, "reschedule")

    proposed = booking_service.to_utc_instant(new_date, new_time, booking.timezone)
    if proposed <= now:
        raise ValidationError("The proposed slot is in the past")

    pending = (
        db.query(RescheduleRequest)
        .filter(RescheduleRequest.booking_id == booking_id, RescheduleRequest.status == RescheduleStatus.pending)
        .first()
    )
    if pending:
        raise Conflict(f"Booking {booking_id} already has a pending reschedule request ({pending.request_id})")

    req = RescheduleRequest(
        booking_id=booking_id,
        requested_by=side,
        requester_id=requester_id,
        new_date=new_date,
        new_time=new_time,
        proposed_at_utc=proposed,
        reason=reason,
        status=RescheduleStatus.pending,
    )
    auto_apply = side == RequestedBy.customer and not booking.contractor_id

    if auto_apply:
        req.status = RescheduleStatus.approved
        req.resolved_by = requester_id
        req.resolved_at = now
        _apply_schedule(db, booking, req, requester_id, now)
    elif not booking_service.touch_booking(
        db, booking_id, Booking.stage.in_(list(lifecycle.RESCHEDULE_STAGES)), now=now,
    ):
        db.rollback()
        raise InvalidState(f"Booking {booking_id} can no longer be rescheduled")

    db.add(req)
    try:
        db.commit()
    except IntegrityError:
        # Another proposal on this booking committed first
        db.rollback()
        raise Conflict(f"Booking {booking_id} already has a pending reschedule request")
    db.refresh(req)
    logger.info("Reschedule request %s on booking %s by %s %s (%s)",
                req.request_id, booking_id, side.value, requester_id, req.status.value)

    publisher.publish(events.RESCHEDULE_REQUESTED, {
        "booking_id": booking_id,
        "request_id": req.request_id,
        "requested_by": side.value,
        "proposed_at_utc": as_utc(req.proposed_at_utc).isoformat(),
    })
    if auto_apply:
        publisher.publish(events.RESCHEDULE_RESOLVED, {
            "booking_id": booking_id,
            "request_id": req.request_id,
            "status": req.status.value,
            "scheduled_at_utc": as_utc(req.proposed_at_utc).isoformat(),
        })
    return req


def resolve_request(
    db: Session,
    publisher: EventPublisher,
    request_id: str,
    resolver_id: str,
    decision: str,
    now: Optional[datetime] = None,
) -> RescheduleRequest:
    """The counterparty approves or rejects a pending proposal."""
    now = now or utcnow()
    target = _DECISIONS.get(decision)
    if target is None:
        raise ValidationError(f"decision must be 'approve' or 'reject', got {decision!r}")

    req = get_request_or_404(db, request_id)
    booking = booking_service.get_booking_or_404(db, req.booking_id)
    counterparty = RequestedBy.contractor if req.requested_by == RequestedBy.customer else RequestedBy.customer
    _check_party(booking, counterparty, resolver_id)

    if req.status != RescheduleStatus.pending:
        if req.status == target:
            return req
        raise InvalidState(f"Reschedule request {request_id} is already {req.status.value}")

    if target == RescheduleStatus.approved:
        booking_service.require_open_stage(booking, lifecycle.RESCHEDULE_STAGES, "reschedule")
        if as_utc(req.proposed_at_utc) <= now:
            raise ValidationError("The proposed slot has already passed; reject it and propose a new one")
        _apply_schedule(db, booking, req, resolver_id, now)

    changed = db.execute(
        update(RescheduleRequest)
        .where(RescheduleRequest.request_id == request_id, RescheduleRequest.status == RescheduleStatus.pending)
        .values(status=target, resolved_by=resolver_id, resolved_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if changed != 1:
        db.rollback()
        raise Conflict(f"Reschedule request {request_id} was resolved concurrently")
    db.commit()
    db.refresh(req)
    logger.info("Reschedule request %s %s by %s", request_id, target.value, resolver_id)

    data = {"booking_id": booking.booking_id, "request_id": request_id, "status": target.value}
    if target == RescheduleStatus.approved:
        data["scheduled_at_utc"] = as_utc(req.proposed_at_utc).isoformat()
    publisher.publish(events.RESCHEDULE_RESOLVED, data)
    return req
