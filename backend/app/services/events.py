"""Event publishing — the engine emits well-defined events, delivery is external.

Services call ``publisher.publish(...)`` only after their transaction has
committed. Delivery failures are logged and dropped here, so a slow or broken
downstream can never undo or block an authoritative transition.
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

BOOKING_STAGE_CHANGED = "booking.stage_changed"
BOOKING_FORFEITED = "booking.forfeited"
BOOKING_CANCELLED = "booking.cancelled"
BID_RECEIVED = "bid.received"
BID_ACCEPTED = "bid.accepted"
BID_REJECTED = "bid.rejected"
BID_EXPIRED = "bid.expired"
EXTRA_PARTS_REQUESTED = "extra_parts.requested"
EXTRA_PARTS_RESOLVED = "extra_parts.resolved"
RESCHEDULE_REQUESTED = "reschedule.requested"
RESCHEDULE_RESOLVED = "reschedule.resolved"
APPEAL_OPENED = "appeal.opened"
APPEAL_RESOLVED = "appeal.resolved"
PAYMENT_SETTLED = "payment.settled"
REVIEW_SUBMITTED = "review.submitted"


def build_event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict[str, Any]) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)


class EventPublisher(ABC):
    """Interface to the external notification collaborator."""

    @abstractmethod
    def deliver(self, envelope: dict[str, Any]) -> None:
        """Hand one envelope to the transport. May raise; callers never see it."""

    def publish(self, event_type: str, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Wrap ``data`` in an envelope and deliver it. Returns None if delivery failed."""
        envelope = build_event(event_type, data)
        try:
            self.deliver(envelope)
        except Exception:
            logger.exception(
                "Failed to deliver %s for booking %s", event_type, data.get("booking_id"),
            )
            return None
        return envelope


class LoggingEventPublisher(EventPublisher):
    """Default publisher: writes each envelope to the log as one JSON line."""

    def deliver(self, envelope: dict[str, Any]) -> None:
        logger.info("event %s", to_json(envelope))


_publisher: EventPublisher = LoggingEventPublisher()


def get_publisher() -> EventPublisher:
    """FastAPI dependency for the process-wide publisher."""
    return _publisher
