"""Booking store — owns the canonical Booking record and commits its transitions.

Responsibilities:
- Compare-and-swap commits on ``bookings.version`` (optimistic concurrency)
- Mutation ledger (BookingMutation) for every committed transition
- Applying lifecycle plans (status patch, cancel, forfeit)
- Events published only after the commit
"""
import logging
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import pytz
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import Conflict, InvalidState, NotFound, StaleVersion, ValidationError
from app.models.bid import Bid, BidStatus
from app.models.booking import AssignmentMode, Booking, BookingStage, ServiceCategory
from app.models.booking_mutation import ActionType, BookingMutation
from app.models.extra_parts import ExtraPartsRequest, ExtraPartsStatus
from app.models.reschedule import RescheduleRequest, RescheduleStatus
from app.services import events, lifecycle
from app.services.events import EventPublisher

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 3

_SNAPSHOT_FIELDS = (
    "booking_id", "customer_id", "service_category", "stage", "assignment_mode", "contractor_id",
    "accepted_bid_id", "bidding_round", "excluded_contractor_ids", "budget_min", "budget_max",
    "accepted_amount", "final_amount", "is_asap", "scheduled_date", "scheduled_time", "timezone",
    "eta_minutes", "before_evidence", "progress_evidence", "after_evidence", "version",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_utc_instant(local_date: date, local_time: time, tz_name: str) -> datetime:
    """Interpret a wall-clock date/time in ``tz_name`` and return the UTC instant."""
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {tz_name}")
    local = tz.localize(datetime.combine(local_date, local_time))
    return local.astimezone(pytz.utc)


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


def booking_snapshot(booking: Booking) -> dict[str, Any]:
    """Serialize a booking to a JSON-safe dict for the mutation ledger."""
    return {name: _json_safe(getattr(booking, name)) for name in _SNAPSHOT_FIELDS}


def get_booking_or_404(db: Session, booking_id: str) -> Booking:
    booking = db.query(Booking).filter(Booking.booking_id == booking_id).first()
    if not booking:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


def cas_update(db: Session, booking: Booking, changes: dict[str, Any], now: Optional[datetime] = None) -> None:
    """Write ``changes`` only if nobody else bumped the version since we read it.

    Rolls back and raises StaleVersion when the compare-and-swap loses.
    """
    read_version = booking.version
    values = dict(changes)
    values["version"] = read_version + 1
    values["updated_at"] = now or utcnow()
    result = db.execute(
        update(Booking)
        .where(Booking.booking_id == booking.booking_id, Booking.version == read_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info("Version conflict on booking %s (read v%d)", booking.booking_id, read_version)
        raise StaleVersion(
            f"Booking {booking.booking_id} was modified concurrently (read version {read_version}). Re-fetch and retry."
        )
    db.refresh(booking)


def touch_booking(db: Session, booking_id: str, *criteria, now: Optional[datetime] = None) -> bool:
    """Bump the version of a booking that still matches ``criteria``.

    Used by writers that add owned records (bids, change requests) without
    changing the booking itself: the bump makes any concurrent compare-and-swap
    on the same booking lose, and the criteria re-check its stage atomically.
    """
    result = db.execute(
        update(Booking)
        .where(Booking.booking_id == booking_id, *criteria)
        .values(version=Booking.version + 1, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_mutation(
    db: Session,
    booking_id: str,
    actor_id: str,
    action: ActionType,
    before: Optional[dict[str, Any]],
    after: dict[str, Any],
) -> None:
    db.add(BookingMutation(
        booking_id=booking_id,
        actor_id=actor_id,
        action_type=action,
        before_snapshot=before,
        after_snapshot=after,
        idempotency_key=str(uuid.uuid4()),
    ))


def publish_stage_changes(
    publisher: EventPublisher,
    booking: Booking,
    from_stage: BookingStage,
    stages: list[BookingStage],
    **delta: Any,
) -> None:
    previous = from_stage
    for stage in stages:
        publisher.publish(events.BOOKING_STAGE_CHANGED, {
            "booking_id": booking.booking_id,
            "from_stage": previous.value,
            "to_stage": stage.value,
            "version": booking.version,
            **{k: _json_safe(v) for k, v in delta.items()},
        })
        previous = stage


# ---------------------------------------------------------------------------
# Creation and reads
# ---------------------------------------------------------------------------
def create_booking(
    db: Session,
    publisher: EventPublisher,
    customer_id: str,
    service_category: str,
    budget_min: Decimal,
    budget_max: Decimal,
    description: Optional[str] = None,
    address: Optional[str] = None,
    is_asap: bool = False,
    scheduled_date: Optional[date] = None,
    scheduled_time: Optional[time] = None,
    tz_name: Optional[str] = None,
    assignment_mode: str = "open_bidding",
    preferred_contractor_id: Optional[str] = None,
    agreed_amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Create a booking in ``seeking_contractor``, or straight to ``assigned`` in auto-assign mode."""
    now = now or utcnow()
    tz_name = tz_name or settings.DEFAULT_TIMEZONE

    try:
        category = ServiceCategory(service_category)
        mode = AssignmentMode(assignment_mode)
    except ValueError as exc:
        raise ValidationError(str(exc))

    if budget_min <= 0 or budget_max <= 0:
        raise ValidationError("Budget amounts must be positive")
    if budget_min > budget_max:
        raise ValidationError("budget_min must not exceed budget_max")

    scheduled_at_utc = None
    if is_asap:
        scheduled_date = scheduled_time = None
    else:
        if scheduled_date is None or scheduled_time is None:
            raise ValidationError("A scheduled date and time are required unless the booking is ASAP")
        scheduled_at_utc = to_utc_instant(scheduled_date, scheduled_time, tz_name)
        if scheduled_at_utc <= now:
            raise ValidationError("The requested slot is in the past")

    if mode == AssignmentMode.auto_assign:
        if not preferred_contractor_id or agreed_amount is None:
            raise ValidationError("Auto-assign bookings need preferred_contractor_id and agreed_amount")
        if agreed_amount <= 0:
            raise ValidationError("agreed_amount must be positive")
    elif preferred_contractor_id or agreed_amount is not None:
        raise ValidationError("preferred_contractor_id and agreed_amount only apply to auto-assign bookings")

    booking = Booking(
        customer_id=customer_id,
        service_category=category,
        description=description,
        address=address,
        stage=BookingStage.seeking_contractor,
        assignment_mode=mode,
        preferred_contractor_id=preferred_contractor_id,
        budget_min=budget_min,
        budget_max=budget_max,
        is_asap=is_asap,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        timezone=tz_name,
        scheduled_at_utc=scheduled_at_utc,
        excluded_contractor_ids=[],
        before_evidence=[],
        progress_evidence=[],
        after_evidence=[],
        bidding_round=1,
        version=1,
    )
    db.add(booking)
    db.flush()

    synthetic_bid = None
    if mode == AssignmentMode.auto_assign:
        # Open bidding is bypassed: accept a single synthetic bid at creation time
        synthetic_bid = Bid(
            booking_id=booking.booking_id,
            contractor_id=preferred_contractor_id,
            amount=agreed_amount,
            included_items=[],
            eta_minutes=1,
            note="Auto-assigned to preferred contractor",
            expires_at=now,
            status=BidStatus.accepted,
            bidding_round=1,
            is_synthetic=True,
            resolved_at=now,
        )
        db.add(synthetic_bid)
        db.flush()
        plan = lifecycle.plan_assignment(booking, preferred_contractor_id, synthetic_bid.bid_id, agreed_amount)
        for name, value in plan.changes.items():
            setattr(booking, name, value)

    record_mutation(db, booking.booking_id, customer_id, ActionType.create, None, booking_snapshot(booking))
    db.commit()
    db.refresh(booking)
    logger.info("Created %s booking %s for customer %s (%s)", category.value, booking.booking_id, customer_id, mode.value)

    if synthetic_bid is not None:
        publisher.publish(events.BID_ACCEPTED, {
            "booking_id": booking.booking_id,
            "bid_id": synthetic_bid.bid_id,
            "contractor_id": preferred_contractor_id,
            "amount": _json_safe(synthetic_bid.amount),
            "synthetic": True,
        })
        publish_stage_changes(
            publisher, booking, BookingStage.seeking_contractor, [BookingStage.assigned],
            contractor_id=preferred_contractor_id,
        )
    return booking


def list_bookings(
    db: Session,
    customer_id: Optional[str] = None,
    contractor_id: Optional[str] = None,
    stage: Optional[str] = None,
) -> list[Booking]:
    query = db.query(Booking)
    if customer_id:
        query = query.filter(Booking.customer_id == customer_id)
    if contractor_id:
        query = query.filter(Booking.contractor_id == contractor_id)
    if stage:
        try:
            query = query.filter(Booking.stage == BookingStage(stage))
        except ValueError:
            raise ValidationError(f"Unknown stage: {stage}")
    return query.order_by(Booking.created_at.desc()).all()


def list_open_bookings(
    db: Session,
    service_category: Optional[str] = None,
    contractor_id: Optional[str] = None,
) -> list[Booking]:
    """Bookings accepting bids, minus those the contractor forfeited."""
    query = db.query(Booking).filter(
        Booking.stage == BookingStage.seeking_contractor,
        Booking.assignment_mode == AssignmentMode.open_bidding,
    )
    if service_category:
        try:
            query = query.filter(Booking.service_category == ServiceCategory(service_category))
        except ValueError:
            raise ValidationError(f"Unknown service category: {service_category}")
    bookings = query.order_by(Booking.created_at.desc()).all()
    if contractor_id:
        bookings = [b for b in bookings if contractor_id not in (b.excluded_contractor_ids or [])]
    return bookings


def get_history(db: Session, booking_id: str) -> list[BookingMutation]:
    get_booking_or_404(db, booking_id)
    return (
        db.query(BookingMutation)
        .filter(BookingMutation.booking_id == booking_id)
        .order_by(BookingMutation.created_at)
        .all()
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def patch_stage(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    stage: str,
    contractor_id: Optional[str] = None,
    evidence: Optional[list[str]] = None,
    eta: Optional[int] = None,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Contractor-driven stage move. Re-applying an identical patch is a no-op."""
    now = now or utcnow()
    try:
        target = BookingStage(stage)
    except ValueError:
        raise ValidationError(f"Unknown stage: {stage}")

    booking = get_booking_or_404(db, booking_id)
    patch = lifecycle.StagePatch(stage=target, contractor_id=contractor_id, evidence=evidence or [], eta=eta)
    plan = lifecycle.plan_stage_patch(booking, patch, now)
    if plan.noop:
        logger.info("Ignoring repeated %s patch on booking %s", target.value, booking_id)
        return booking

    if expected_version is not None and expected_version != booking.version:
        raise Conflict(
            f"Version mismatch: expected {expected_version}, booking is at {booking.version}. Re-fetch and retry."
        )

    from_stage = booking.stage
    before = booking_snapshot(booking)
    cas_update(db, booking, plan.changes, now)
    record_mutation(db, booking_id, contractor_id, ActionType.stage_change, before, booking_snapshot(booking))
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s moved %s -> %s (v%d)", booking_id, from_stage.value, booking.stage.value, booking.version)

    delta: dict[str, Any] = {}
    if target == BookingStage.contractor_en_route:
        delta["eta_minutes"] = booking.eta_minutes
    if patch.evidence:
        delta["evidence_added"] = len(patch.evidence)
    publish_stage_changes(publisher, booking, from_stage, plan.stages, **delta)
    return booking


def cancel_booking(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    customer_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Customer withdraws a booking that has no contractor yet; pending bids are rejected."""
    now = now or utcnow()
    booking = get_booking_or_404(db, booking_id)
    plan = lifecycle.plan_cancel(booking, customer_id, reason, now)
    if plan.noop:
        return booking

    before = booking_snapshot(booking)
    cas_update(db, booking, plan.changes, now)
    pending_bids = (
        db.query(Bid)
        .filter(Bid.booking_id == booking_id, Bid.status == BidStatus.pending)
        .all()
    )
    rejected_ids = [b.bid_id for b in pending_bids]
    if rejected_ids:
        db.execute(
            update(Bid)
            .where(Bid.bid_id.in_(rejected_ids), Bid.status == BidStatus.pending)
            .values(status=BidStatus.rejected, rejection_reason="booking_cancelled", resolved_at=now)
            .execution_options(synchronize_session=False)
        )
    record_mutation(db, booking_id, customer_id, ActionType.cancel, before, booking_snapshot(booking))
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s cancelled by customer %s (%d pending bids rejected)", booking_id, customer_id, len(rejected_ids))

    publisher.publish(events.BOOKING_CANCELLED, {"booking_id": booking_id, "reason": reason})
    for bid in pending_bids:
        publisher.publish(events.BID_REJECTED, {
            "booking_id": booking_id,
            "bid_id": bid.bid_id,
            "contractor_id": bid.contractor_id,
            "reason": "booking_cancelled",
        })
    publish_stage_changes(publisher, booking, BookingStage.seeking_contractor, plan.stages)
    return booking


def forfeit_booking(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    contractor_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Assigned contractor abandons the job; the booking re-enters open bidding without them."""
    now = now or utcnow()
    booking = get_booking_or_404(db, booking_id)
    plan = lifecycle.plan_forfeit(booking, contractor_id, reason, now)
    if plan.noop:
        return booking

    from_stage = booking.stage
    before = booking_snapshot(booking)
    cas_update(db, booking, plan.changes, now)

    # Requests raised under the abandoned assignment can no longer be acted on
    closed_parts = db.execute(
        update(ExtraPartsRequest)
        .where(ExtraPartsRequest.booking_id == booking_id, ExtraPartsRequest.status == ExtraPartsStatus.pending)
        .values(
            status=ExtraPartsStatus.rejected,
            customer_notes="Closed automatically: contractor forfeited the job",
            resolved_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    closed_reschedules = db.execute(
        update(RescheduleRequest)
        .where(RescheduleRequest.booking_id == booking_id, RescheduleRequest.status == RescheduleStatus.pending)
        .values(status=RescheduleStatus.rejected, resolved_by=contractor_id, resolved_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount

    record_mutation(db, booking_id, contractor_id, ActionType.forfeit, before, booking_snapshot(booking))
    db.commit()
    db.refresh(booking)
    logger.info(
        "Contractor %s forfeited booking %s from %s (closed %d parts, %d reschedule requests)",
        contractor_id, booking_id, from_stage.value, closed_parts, closed_reschedules,
    )

    publisher.publish(events.BOOKING_FORFEITED, {
        "booking_id": booking_id,
        "contractor_id": contractor_id,
        "reason": reason,
        "bidding_round": booking.bidding_round,
    })
    publish_stage_changes(publisher, booking, from_stage, plan.stages, contractor_id=None)
    return booking


def require_open_stage(booking: Booking, allowed: frozenset, action: str) -> None:
    if booking.stage not in allowed:
        raise InvalidState(f"Cannot {action} while booking is '{booking.stage.value}'")
