"""Pytest fixtures — per-test SQLite database, recording publisher and gateway."""
import os

# Must be set before app.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["BID_EXPIRY_SWEEP_ENABLED"] = "false"

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from app.database import Base, get_db
from app.main import app
from app.services.events import EventPublisher, get_publisher
from app.services.payment_gateway import PaymentGateway, PaymentGatewayError, get_payment_gateway

# Import all models so they register with Base.metadata
from app.models.booking import Booking                      # noqa: F401
from app.models.bid import Bid                              # noqa: F401
from app.models.extra_parts import ExtraPartsRequest        # noqa: F401
from app.models.reschedule import RescheduleRequest         # noqa: F401
from app.models.appeal import Appeal                        # noqa: F401
from app.models.payment import PaymentSettlement            # noqa: F401
from app.models.booking_mutation import BookingMutation     # noqa: F401
from app.models.review import Review                        # noqa: F401

SQLITE_URL = "sqlite:///./test.db"

CUSTOMER = "cust-1"
CONTRACTOR_A = "contractor-a"
CONTRACTOR_B = "contractor-b"
CONTRACTOR_C = "contractor-c"


class RecordingEventPublisher(EventPublisher):
    """Keeps every delivered envelope in memory."""

    def __init__(self):
        self.envelopes = []

    def deliver(self, envelope):
        self.envelopes.append(envelope)

    def types(self) -> list[str]:
        return [e["event_type"] for e in self.envelopes]

    def of_type(self, event_type: str) -> list[dict]:
        return [e["data"] for e in self.envelopes if e["event_type"] == event_type]


class RecordingPaymentGateway(PaymentGateway):
    """Approves charges (or declines all of them when ``decline`` is set) and records them."""

    def __init__(self):
        self.charges = []
        self.decline = False

    def charge(self, booking_id, payer_id, amount, method):
        if self.decline:
            raise PaymentGatewayError("card declined")
        self.charges.append((booking_id, payer_id, Decimal(amount), method))
        return f"test_{len(self.charges)}"


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def publisher():
    return RecordingEventPublisher()


@pytest.fixture(scope="function")
def gateway():
    return RecordingPaymentGateway()


@pytest.fixture(scope="function")
def client(session_factory, publisher, gateway):
    """FastAPI TestClient with database, publisher and gateway dependencies overridden."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers: drive bookings through the API, return response JSON
# ---------------------------------------------------------------------------
def future_date(days: int = 5) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


def create_test_booking(client: TestClient, customer_id: str = CUSTOMER, **overrides) -> dict:
    """Helper — POST /api/bookings (ASAP plumbing job, budget 50-150 unless overridden)."""
    body = {
        "customer_id": customer_id,
        "service_category": "plumbing",
        "description": "Leaking kitchen tap",
        "address": "10 Anson Road",
        "budget_min": 50,
        "budget_max": 150,
        "is_asap": True,
    }
    body.update(overrides)
    resp = client.post("/api/bookings/", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def submit_test_bid(client: TestClient, booking_id: str, contractor_id: str, amount=80, **overrides) -> dict:
    """Helper — POST /api/bids and return response JSON."""
    body = {
        "booking_id": booking_id,
        "contractor_id": contractor_id,
        "amount": amount,
        "eta_minutes": 30,
    }
    body.update(overrides)
    resp = client.post("/api/bids/", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def accept_test_bid(client: TestClient, bid_id: str, customer_id: str = CUSTOMER) -> dict:
    resp = client.post(f"/api/bids/{bid_id}/accept", json={"customer_id": customer_id})
    assert resp.status_code == 200, resp.text
    return resp.json()


def patch_stage(client: TestClient, booking_id: str, stage: str, contractor_id: str, **extra):
    """Helper — PATCH /api/bookings/{id}/status; returns the raw response."""
    body = {"stage": stage, "contractor_id": contractor_id}
    body.update(extra)
    return client.patch(f"/api/bookings/{booking_id}/status", json=body)


def assigned_booking(client: TestClient, contractor_id: str = CONTRACTOR_A, amount=80, **overrides) -> dict:
    """Helper — create a booking and accept one bid from ``contractor_id``."""
    booking = create_test_booking(client, **overrides)
    bid = submit_test_bid(client, booking["booking_id"], contractor_id, amount=amount)
    return accept_test_bid(client, bid["bid_id"])["booking"]


_STEPS = [
    ("contractor_en_route", {"eta": 20}),
    ("work_started", {"evidence": ["before-1.jpg"]}),
    ("work_in_progress", {}),
    ("work_completed", {"evidence": ["after-1.jpg"]}),
]


def advance_to(client: TestClient, booking_id: str, contractor_id: str, target: str) -> dict:
    """Helper — apply status patches in order until ``target`` has been applied."""
    booking = None
    for stage, extra in _STEPS:
        resp = patch_stage(client, booking_id, stage, contractor_id, **extra)
        assert resp.status_code == 200, resp.text
        booking = resp.json()
        if stage == target:
            return booking
    raise AssertionError(f"unknown target stage {target}")


def create_test_extra_parts(client: TestClient, booking_id: str, contractor_id: str = CONTRACTOR_A,
                            unit_price=45, quantity=1, **overrides) -> dict:
    body = {
        "booking_id": booking_id,
        "contractor_id": contractor_id,
        "part_name": "Replacement valve",
        "quantity": quantity,
        "unit_price": unit_price,
        "justification": "Old valve is corroded",
    }
    body.update(overrides)
    resp = client.post("/api/extra-parts/", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def resolve_test_extra_parts(client: TestClient, request_id: str, decision: str,
                             customer_id: str = CUSTOMER, **extra):
    body = {"customer_id": customer_id, "decision": decision}
    body.update(extra)
    return client.post(f"/api/extra-parts/{request_id}/resolve", json=body)


def settle(client: TestClient, booking_id: str, payer_id: str = CUSTOMER):
    return client.post("/api/payments/settle", json={"booking_id": booking_id, "payer_id": payer_id})
