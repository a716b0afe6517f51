"""FastAPI application entry point."""
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.database import Base, engine
from app.errors import EngineError, engine_error_handler
from app.logging_config import setup_logging
from app.services.bid_expiry import expiry_loop

# Import routers
from app.routers import appeals, bids, bookings, extra_parts, payments, reschedules, reviews

# Import all models so Base.metadata knows about them
from app.models.booking import Booking                      # noqa: F401
from app.models.bid import Bid                              # noqa: F401
from app.models.extra_parts import ExtraPartsRequest        # noqa: F401
from app.models.reschedule import RescheduleRequest         # noqa: F401
from app.models.appeal import Appeal                        # noqa: F401
from app.models.payment import PaymentSettlement            # noqa: F401
from app.models.booking_mutation import BookingMutation     # noqa: F401
from app.models.review import Review                        # noqa: F401

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Home Services Booking Engine",
    description="Booking lifecycle and bid arbitration for a home-services marketplace",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(EngineError, engine_error_handler)

# Register routers
app.include_router(bookings.router, prefix="/api/bookings", tags=["Bookings"])
app.include_router(bids.router, prefix="/api/bids", tags=["Bids"])
app.include_router(extra_parts.router, prefix="/api/extra-parts", tags=["ExtraParts"])
app.include_router(reschedules.router, prefix="/api/reschedules", tags=["Reschedules"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(appeals.router, prefix="/api/appeals", tags=["Appeals"])
app.include_router(reviews.router, prefix="/api/reviews", tags=["Reviews"])

_stop_event = asyncio.Event()
_expiry_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def on_startup():
    """Create database tables on startup (for SQLite dev mode) and start the bid expiry sweep."""
    global _expiry_task
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    if settings.BID_EXPIRY_SWEEP_ENABLED:
        _stop_event.clear()
        _expiry_task = asyncio.create_task(expiry_loop(_stop_event, settings.BID_EXPIRY_SWEEP_SECONDS))


@app.on_event("shutdown")
async def on_shutdown():
    global _expiry_task
    _stop_event.set()
    if _expiry_task:
        await _expiry_task
        _expiry_task = None


@app.get("/api/health")
def health_check():
    return {"status": "ok", "bid_expiry_sweep": settings.BID_EXPIRY_SWEEP_ENABLED}
