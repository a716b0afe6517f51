"""Background sweep that expires stale pending bids on a timer.

Reads and accepts already expire bids lazily with the same ``expires_at <= now``
rule; the sweep only makes expiry visible (and emits ``bid.expired``) without
waiting for someone to look.
"""
import asyncio
import logging

from app.database import SessionLocal
from app.services import bid_service
from app.services.events import get_publisher

logger = logging.getLogger(__name__)


def sweep_once() -> int:
    db = SessionLocal()
    try:
        return len(bid_service.expire_stale_bids(db, get_publisher()))
    finally:
        db.close()


async def expiry_loop(stop_event: asyncio.Event, interval: float):
    logger.info("Bid expiry sweep started (every %ss)", interval)
    while not stop_event.is_set():
        try:
            await asyncio.to_thread(sweep_once)
        except Exception:
            logger.exception("Bid expiry sweep failed; retrying next tick")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
    logger.info("Bid expiry sweep stopped")
