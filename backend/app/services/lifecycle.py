"""Booking lifecycle rules.

Pure functions of (current booking, actor, payload) -> plan | rejection. Nothing
here touches the session; ``booking_service`` applies the returned plan with a
compare-and-swap commit. Keeping the rules in one place means every caller
(HTTP routes, sweeper, tests) sees the same state machine.

Happy path:

    seeking_contractor -> assigned -> contractor_en_route -> work_started
        -> work_in_progress -> work_completed -> awaiting_payment -> paid

Side exits: ``cancelled`` (customer, only while seeking) and ``forfeited``
(assigned contractor, assigned..work_in_progress, lands back in seeking).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from app.errors import InvalidState, MissingEvidence, NotAssignedContractor, NotBookingCustomer, ValidationError
from app.models.booking import AssignmentMode, Booking, BookingStage

HAPPY_PATH = (
    BookingStage.seeking_contractor,
    BookingStage.assigned,
    BookingStage.contractor_en_route,
    BookingStage.work_started,
    BookingStage.work_in_progress,
    BookingStage.work_completed,
    BookingStage.awaiting_payment,
    BookingStage.paid,
)

TERMINAL_STAGES = frozenset({BookingStage.paid, BookingStage.cancelled})

FORFEITABLE_STAGES = frozenset({
    BookingStage.assigned,
    BookingStage.contractor_en_route,
    BookingStage.work_started,
    BookingStage.work_in_progress,
})

EXTRA_PARTS_STAGES = frozenset({
    BookingStage.work_started,
    BookingStage.work_in_progress,
    BookingStage.awaiting_payment,
})

RESCHEDULE_STAGES = frozenset({
    BookingStage.seeking_contractor,
    BookingStage.assigned,
    BookingStage.contractor_en_route,
    BookingStage.work_started,
    BookingStage.work_in_progress,
})

# Contractor-driven moves accepted by the status patch: target -> required current stage
_PATCH_PREDECESSOR = {
    BookingStage.contractor_en_route: BookingStage.assigned,
    BookingStage.work_started: BookingStage.contractor_en_route,
    BookingStage.work_in_progress: BookingStage.work_started,
    BookingStage.work_completed: BookingStage.work_in_progress,
}

# Which evidence list a patch to this stage appends to
_EVIDENCE_FIELD = {
    BookingStage.work_started: "before_evidence",
    BookingStage.work_in_progress: "progress_evidence",
    BookingStage.work_completed: "after_evidence",
}

# Operations that own the transitions the status patch refuses
_OWNING_OPERATION = {
    BookingStage.seeking_contractor: "forfeit or a new booking",
    BookingStage.assigned: "bid acceptance",
    BookingStage.awaiting_payment: "completing the work",
    BookingStage.paid: "payment settlement",
    BookingStage.cancelled: "booking cancellation",
    BookingStage.forfeited: "forfeit",
}


@dataclass
class StagePatch:
    stage: BookingStage
    contractor_id: Optional[str] = None
    evidence: list[str] = field(default_factory=list)
    eta: Optional[int] = None


@dataclass
class TransitionPlan:
    """Column changes to commit plus the stages passed through, for events."""

    changes: dict[str, Any]
    stages: list[BookingStage]
    noop: bool = False


def merge_evidence(existing: Optional[list[str]], new: list[str]) -> list[str]:
    """Append unseen items, preserving order; re-submitted items are not doubled."""
    merged = list(existing or [])
    for item in new:
        if item not in merged:
            merged.append(item)
    return merged


def _clean_evidence(evidence: Optional[list[str]]) -> list[str]:
    return [e.strip() for e in (evidence or []) if e and e.strip()]


def require_assigned_contractor(booking: Booking, contractor_id: Optional[str]) -> None:
    if not booking.contractor_id or contractor_id != booking.contractor_id:
        raise NotAssignedContractor(
            f"Contractor {contractor_id} is not assigned to booking {booking.booking_id}"
        )


def require_customer(booking: Booking, customer_id: str) -> None:
    if customer_id != booking.customer_id:
        raise NotBookingCustomer(f"User {customer_id} is not the customer of booking {booking.booking_id}")


def _is_retry(booking: Booking, patch: StagePatch, evidence: list[str]) -> bool:
    """Same transition re-applied with a payload the booking already reflects."""
    current = booking.stage
    if patch.stage == BookingStage.work_completed:
        reached = current in (BookingStage.work_completed, BookingStage.awaiting_payment)
    else:
        reached = current == patch.stage
    if not reached:
        return False
    if patch.eta is not None and patch.eta != booking.eta_minutes:
        return False
    field_name = _EVIDENCE_FIELD.get(patch.stage)
    if field_name is None:
        return not evidence
    existing = getattr(booking, field_name) or []
    return all(item in existing for item in evidence)


def plan_stage_patch(booking: Booking, patch: StagePatch, now: datetime) -> TransitionPlan:
    """Validate a contractor status patch and return the changes it implies.

    Raises InvalidState, MissingEvidence, ValidationError or NotAssignedContractor.
    """
    if patch.stage not in _PATCH_PREDECESSOR:
        owner = _OWNING_OPERATION.get(patch.stage, "another operation")
        raise InvalidState(f"Stage '{patch.stage.value}' cannot be set by status patch; it is reached via {owner}")

    require_assigned_contractor(booking, patch.contractor_id)
    evidence = _clean_evidence(patch.evidence)

    if _is_retry(booking, patch, evidence):
        return TransitionPlan(changes={}, stages=[], noop=True)

    expected = _PATCH_PREDECESSOR[patch.stage]
    if booking.stage != expected:
        raise InvalidState(
            f"Cannot move booking from '{booking.stage.value}' to '{patch.stage.value}'; "
            f"it must be '{expected.value}' first"
        )

    changes: dict[str, Any] = {"stage": patch.stage}
    stages = [patch.stage]

    if patch.stage == BookingStage.contractor_en_route:
        if patch.eta is None or patch.eta <= 0:
            raise ValidationError("An ETA in minutes is required when heading to the job")
        changes["eta_minutes"] = patch.eta
        changes["eta_set_at"] = now
    elif patch.eta is not None:
        raise ValidationError("ETA can only be declared when heading to the job")

    field_name = _EVIDENCE_FIELD.get(patch.stage)
    if field_name is None and evidence:
        raise ValidationError(f"Evidence is not accepted for stage '{patch.stage.value}'")

    if patch.stage == BookingStage.work_started:
        changes["started_at"] = now

    if patch.stage == BookingStage.work_completed:
        if not evidence:
            raise MissingEvidence("At least one 'after' evidence item is required to complete the work")
        changes["completed_at"] = now
        # work_completed -> awaiting_payment is automatic and immediate
        changes["stage"] = BookingStage.awaiting_payment
        stages.append(BookingStage.awaiting_payment)

    if field_name is not None and evidence:
        changes[field_name] = merge_evidence(getattr(booking, field_name), evidence)

    return TransitionPlan(changes=changes, stages=stages)


def _is_repeat_forfeit(booking: Booking, contractor_id: str) -> bool:
    """The last forfeit was by this contractor and nobody has taken the job since."""
    excluded = booking.excluded_contractor_ids or []
    return (
        booking.contractor_id is None
        and booking.stage == BookingStage.seeking_contractor
        and bool(excluded)
        and excluded[-1] == contractor_id
    )


def plan_forfeit(booking: Booking, contractor_id: str, reason: Optional[str], now: datetime) -> TransitionPlan:
    """Assigned contractor walks away: clear the assignment and reopen bidding."""
    if _is_repeat_forfeit(booking, contractor_id):
        return TransitionPlan(changes={}, stages=[], noop=True)
    require_assigned_contractor(booking, contractor_id)
    if booking.stage not in FORFEITABLE_STAGES:
        raise InvalidState(f"Cannot forfeit a booking in stage '{booking.stage.value}'")

    excluded = merge_evidence(booking.excluded_contractor_ids, [contractor_id])
    changes = {
        "stage": BookingStage.seeking_contractor,
        "contractor_id": None,
        "accepted_bid_id": None,
        "accepted_amount": None,
        "eta_minutes": None,
        "eta_set_at": None,
        "started_at": None,
        "before_evidence": [],
        "progress_evidence": [],
        "after_evidence": [],
        "excluded_contractor_ids": excluded,
        "bidding_round": booking.bidding_round + 1,
        "assignment_mode": AssignmentMode.open_bidding,
        "forfeit_reason": reason,
        "forfeited_at": now,
    }
    return TransitionPlan(changes=changes, stages=[BookingStage.forfeited, BookingStage.seeking_contractor])


def plan_cancel(booking: Booking, customer_id: str, reason: Optional[str], now: datetime) -> TransitionPlan:
    require_customer(booking, customer_id)
    if booking.stage == BookingStage.cancelled:
        return TransitionPlan(changes={}, stages=[], noop=True)
    if booking.stage != BookingStage.seeking_contractor:
        raise InvalidState(
            f"Only bookings still seeking a contractor can be cancelled (stage is '{booking.stage.value}')"
        )
    changes = {
        "stage": BookingStage.cancelled,
        "cancel_reason": reason,
        "cancelled_at": now,
        "archived_at": now,
    }
    return TransitionPlan(changes=changes, stages=[BookingStage.cancelled])


def plan_assignment(booking: Booking, contractor_id: str, bid_id: str, amount) -> TransitionPlan:
    """Steps (e) of acceptance: move a seeking booking to assigned."""
    if booking.stage != BookingStage.seeking_contractor:
        raise InvalidState(f"Booking {booking.booking_id} is no longer seeking a contractor")
    if contractor_id in (booking.excluded_contractor_ids or []):
        raise InvalidState(f"Contractor {contractor_id} forfeited booking {booking.booking_id}")
    changes = {
        "stage": BookingStage.assigned,
        "contractor_id": contractor_id,
        "accepted_bid_id": bid_id,
        "accepted_amount": amount,
    }
    return TransitionPlan(changes=changes, stages=[BookingStage.assigned])
