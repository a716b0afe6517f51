"""Bid ledger — competing offers against a booking and exactly-one-winner acceptance.

CONCURRENCY
===========
Acceptance commits five steps in one transaction:

  (a) bid still pending and unexpired      -> guarded UPDATE ... WHERE status='pending'
                                              AND expires_at > now
  (b) booking still seeking_contractor     -> checked on read, enforced by CAS
  (c) bid -> accepted
  (d) sibling pending bids -> rejected
  (e) booking -> assigned                  -> UPDATE bookings ... WHERE version = :read

If the booking's version moved (a new bid arrived, another acceptance won) the
whole attempt is rolled back and re-read, up to MAX_RETRY_ATTEMPTS. A re-read
that finds the bid or booking no longer available fails with
BidNoLongerAvailable. A partial unique index on accepted bids per bidding round
is the final safety net; a second one keeps each contractor to one pending bid
per booking when two submissions race past the duplicate check.

Expiry is a single rule, ``expires_at <= now``, shared by the lazy path (every
read and accept) and the proactive sweep.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import (
    BidNoLongerAvailable, Conflict, DuplicateBid, InvalidState, NotFound, StaleVersion, ValidationError,
)
from app.models.bid import Bid, BidStatus
from app.models.booking import AssignmentMode, Booking, BookingStage
from app.models.booking_mutation import ActionType
from app.services import booking_service, events, lifecycle
from app.services.booking_service import MAX_RETRY_ATTEMPTS, as_utc, utcnow
from app.services.events import EventPublisher

logger = logging.getLogger(__name__)


def is_expired(bid: Bid, now: datetime) -> bool:
    return as_utc(bid.expires_at) <= now


def get_bid_or_404(db: Session, bid_id: str) -> Bid:
    bid = db.query(Bid).filter(Bid.bid_id == bid_id).first()
    if not bid:
        raise NotFound(f"Bid {bid_id} not found")
    return bid


def _normalize_items(included_items: Optional[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    items = []
    for item in included_items or []:
        name = (item.get("name") or "").strip()
        if not name:
            raise ValidationError("Every included item needs a name")
        cost = Decimal(str(item.get("cost", 0)))
        if cost < 0:
            raise ValidationError(f"Included item '{name}' has a negative cost")
        items.append({"name": name, "cost": float(cost)})
    return items


def submit_bid(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    contractor_id: str,
    amount: Decimal,
    eta_minutes: int,
    included_items: Optional[list[dict[str, Any]]] = None,
    note: Optional[str] = None,
    expires_in_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Bid:
    """Record a pending bid; at most one pending bid per contractor per booking."""
    now = now or utcnow()
    if amount is None or amount <= 0:
        raise ValidationError("Bid amount must be positive")
    if eta_minutes is None or eta_minutes <= 0:
        raise ValidationError("ETA minutes must be positive")
    window = expires_in_minutes if expires_in_minutes is not None else settings.BID_EXPIRY_MINUTES
    if window <= 0 or window > settings.BID_EXPIRY_MAX_MINUTES:
        raise ValidationError(f"expires_in_minutes must be between 1 and {settings.BID_EXPIRY_MAX_MINUTES}")
    items = _normalize_items(included_items)

    booking = booking_service.get_booking_or_404(db, booking_id)
    if booking.assignment_mode == AssignmentMode.auto_assign:
        raise InvalidState(f"Booking {booking_id} is auto-assigned and does not take bids")
    if booking.stage != BookingStage.seeking_contractor:
        raise InvalidState(f"Booking {booking_id} is not accepting bids (stage '{booking.stage.value}')")
    if contractor_id in (booking.excluded_contractor_ids or []):
        raise InvalidState(f"Contractor {contractor_id} forfeited booking {booking_id} and cannot bid on it again")

    existing = (
        db.query(Bid)
        .filter(
            Bid.booking_id == booking_id,
            Bid.contractor_id == contractor_id,
            Bid.status == BidStatus.pending,
        )
        .all()
    )
    if any(not is_expired(b, now) for b in existing):
        raise DuplicateBid(f"Contractor {contractor_id} already has a pending bid on booking {booking_id}")
    if existing:
        expire_stale_bids(db, publisher, now=now, booking_id=booking_id)

    # Serialises with acceptance: a bid can only land while the booking is still seeking
    if not booking_service.touch_booking(
        db, booking_id, Booking.stage == BookingStage.seeking_contractor, now=now,
    ):
        db.rollback()
        raise InvalidState(f"Booking {booking_id} stopped accepting bids")

    bid = Bid(
        booking_id=booking_id,
        contractor_id=contractor_id,
        amount=amount,
        included_items=items,
        eta_minutes=eta_minutes,
        note=note,
        expires_at=now + timedelta(minutes=window),
        status=BidStatus.pending,
        bidding_round=booking.bidding_round,
    )
    db.add(bid)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent submission from the same contractor committed first
        db.rollback()
        raise DuplicateBid(f"Contractor {contractor_id} already has a pending bid on booking {booking_id}")
    db.refresh(bid)
    logger.info("Bid %s from contractor %s on booking %s for %s", bid.bid_id, contractor_id, booking_id, amount)

    publisher.publish(events.BID_RECEIVED, {
        "booking_id": booking_id,
        "bid_id": bid.bid_id,
        "contractor_id": contractor_id,
        "amount": str(bid.amount),
        "expires_at": as_utc(bid.expires_at).isoformat(),
    })
    return bid


def accept_bid(
    db: Session,
    publisher: EventPublisher,
    bid_id: str,
    customer_id: str,
    now: Optional[datetime] = None,
) -> tuple[Booking, Bid]:
    """Atomically accept one bid, reject its pending siblings and assign the booking."""
    now = now or utcnow()

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        bid = get_bid_or_404(db, bid_id)
        booking = booking_service.get_booking_or_404(db, bid.booking_id)
        lifecycle.require_customer(booking, customer_id)

        if bid.status != BidStatus.pending:
            raise BidNoLongerAvailable(f"Bid {bid_id} is already {bid.status.value}")
        if is_expired(bid, now):
            expire_stale_bids(db, publisher, now=now, booking_id=booking.booking_id)
            raise BidNoLongerAvailable(f"Bid {bid_id} expired at {as_utc(bid.expires_at).isoformat()}")
        if bid.bidding_round != booking.bidding_round:
            raise BidNoLongerAvailable(f"Bid {bid_id} belongs to an earlier bidding round")
        try:
            plan = lifecycle.plan_assignment(booking, bid.contractor_id, bid.bid_id, bid.amount)
        except InvalidState as exc:
            raise BidNoLongerAvailable(exc.message)

        before = booking_service.booking_snapshot(booking)
        try:
            booking_service.cas_update(db, booking, plan.changes, now)
        except StaleVersion:
            logger.info("accept_bid retry for bid %s (attempt %d)", bid_id, attempt)
            db.expire_all()
            continue

        try:
            won = db.execute(
                update(Bid)
                .where(Bid.bid_id == bid_id, Bid.status == BidStatus.pending, Bid.expires_at > now)
                .values(status=BidStatus.accepted, resolved_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
        except IntegrityError:
            db.rollback()
            raise BidNoLongerAvailable(f"Another bid on booking {booking.booking_id} was accepted first")
        if won != 1:
            db.rollback()
            raise BidNoLongerAvailable(f"Bid {bid_id} was resolved or expired concurrently")

        siblings = (
            db.query(Bid.bid_id, Bid.contractor_id)
            .filter(Bid.booking_id == booking.booking_id, Bid.status == BidStatus.pending, Bid.bid_id != bid_id)
            .all()
        )
        if siblings:
            db.execute(
                update(Bid)
                .where(Bid.bid_id.in_([s.bid_id for s in siblings]), Bid.status == BidStatus.pending)
                .values(status=BidStatus.rejected, rejection_reason="another_bid_accepted", resolved_at=now)
                .execution_options(synchronize_session=False)
            )

        booking_service.record_mutation(
            db, booking.booking_id, customer_id, ActionType.assign, before, booking_service.booking_snapshot(booking),
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise BidNoLongerAvailable(f"Another bid on booking {booking.booking_id} was accepted first")
        db.refresh(booking)
        db.refresh(bid)
        logger.info(
            "Bid %s accepted for booking %s; contractor %s assigned, %d sibling bids rejected",
            bid_id, booking.booking_id, bid.contractor_id, len(siblings),
        )

        publisher.publish(events.BID_ACCEPTED, {
            "booking_id": booking.booking_id,
            "bid_id": bid_id,
            "contractor_id": bid.contractor_id,
            "amount": str(bid.amount),
        })
        for sibling in siblings:
            publisher.publish(events.BID_REJECTED, {
                "booking_id": booking.booking_id,
                "bid_id": sibling.bid_id,
                "contractor_id": sibling.contractor_id,
                "reason": "another_bid_accepted",
            })
        booking_service.publish_stage_changes(
            publisher, booking, BookingStage.seeking_contractor, plan.stages, contractor_id=bid.contractor_id,
        )
        return booking, bid

    raise Conflict(f"Could not accept bid {bid_id} due to concurrent activity. Please try again.")


def reject_bid(
    db: Session,
    publisher: EventPublisher,
    bid_id: str,
    customer_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Bid:
    """Customer turns down one bid; sibling bids are unaffected."""
    now = now or utcnow()
    bid = get_bid_or_404(db, bid_id)
    booking = booking_service.get_booking_or_404(db, bid.booking_id)
    lifecycle.require_customer(booking, customer_id)

    if bid.status != BidStatus.pending:
        raise BidNoLongerAvailable(f"Bid {bid_id} is already {bid.status.value}")
    if is_expired(bid, now):
        expire_stale_bids(db, publisher, now=now, booking_id=booking.booking_id)
        raise BidNoLongerAvailable(f"Bid {bid_id} has expired")

    changed = db.execute(
        update(Bid)
        .where(Bid.bid_id == bid_id, Bid.status == BidStatus.pending)
        .values(status=BidStatus.rejected, rejection_reason=reason, resolved_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if changed != 1:
        db.rollback()
        raise BidNoLongerAvailable(f"Bid {bid_id} was resolved concurrently")
    db.commit()
    db.refresh(bid)
    logger.info("Bid %s rejected by customer %s", bid_id, customer_id)

    publisher.publish(events.BID_REJECTED, {
        "booking_id": bid.booking_id,
        "bid_id": bid_id,
        "contractor_id": bid.contractor_id,
        "reason": reason,
    })
    return bid


def expire_stale_bids(
    db: Session,
    publisher: EventPublisher,
    now: Optional[datetime] = None,
    booking_id: Optional[str] = None,
) -> list[str]:
    """Move every pending bid whose expiry has passed to ``expired``. Idempotent."""
    now = now or utcnow()
    query = db.query(Bid.bid_id, Bid.booking_id, Bid.contractor_id).filter(
        Bid.status == BidStatus.pending, Bid.expires_at <= now,
    )
    if booking_id:
        query = query.filter(Bid.booking_id == booking_id)
    stale = query.all()
    if not stale:
        return []

    db.execute(
        update(Bid)
        .where(Bid.bid_id.in_([s.bid_id for s in stale]), Bid.status == BidStatus.pending, Bid.expires_at <= now)
        .values(status=BidStatus.expired, resolved_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.expire_all()
    logger.info("Expired %d stale bids", len(stale))

    for row in stale:
        publisher.publish(events.BID_EXPIRED, {
            "booking_id": row.booking_id,
            "bid_id": row.bid_id,
            "contractor_id": row.contractor_id,
        })
    return [row.bid_id for row in stale]


def list_bids(
    db: Session,
    publisher: EventPublisher,
    booking_id: str,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[Bid]:
    """Bids on a booking, cheapest first; stale pending bids are expired on the way."""
    booking_service.get_booking_or_404(db, booking_id)
    expire_stale_bids(db, publisher, now=now, booking_id=booking_id)
    query = db.query(Bid).filter(Bid.booking_id == booking_id)
    if status:
        try:
            query = query.filter(Bid.status == BidStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown bid status: {status}")
    return query.order_by(Bid.amount, Bid.created_at).all()


def list_contractor_bids(db: Session, contractor_id: str, status: Optional[str] = None) -> list[Bid]:
    query = db.query(Bid).filter(Bid.contractor_id == contractor_id)
    if status:
        try:
            query = query.filter(Bid.status == BidStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown bid status: {status}")
    return query.order_by(Bid.created_at.desc()).all()
