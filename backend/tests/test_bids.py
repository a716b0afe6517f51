"""Tests for the bid ledger — submission, acceptance, rejection and expiry."""
import asyncio
from datetime import datetime, timedelta, timezone

from app.models.bid import Bid, BidStatus
from app.services import bid_expiry, bid_service
from tests.conftest import (
    CONTRACTOR_A, CONTRACTOR_B, CONTRACTOR_C, CUSTOMER,
    accept_test_bid, create_test_booking, submit_test_bid,
)


def _backdate(db, bid_id, minutes=1):
    """Push a bid's expiry into the past, as if its window had run out."""
    db.query(Bid).filter(Bid.bid_id == bid_id).update(
        {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=minutes)},
        synchronize_session=False,
    )
    db.commit()


class TestSubmitBid:

    def test_submit_bid(self, client, publisher):
        booking = create_test_booking(client)
        bid = submit_test_bid(
            client, booking["booking_id"], CONTRACTOR_A, amount=80,
            included_items=[{"name": "Labour", "cost": 60}, {"name": "Washer", "cost": 20}],
            note="Can come today",
        )
        assert bid["status"] == "pending"
        assert bid["amount"] == 80
        assert bid["included_items"] == [{"name": "Labour", "cost": 60.0}, {"name": "Washer", "cost": 20.0}]
        assert bid["bidding_round"] == 1
        assert publisher.of_type("bid.received")[0]["bid_id"] == bid["bid_id"]

    def test_default_expiry_window(self, client):
        booking = create_test_booking(client)
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        expires = datetime.fromisoformat(bid["expires_at"]).replace(tzinfo=None)
        assert timedelta(minutes=29) < expires - before < timedelta(minutes=31)

    def test_custom_expiry_window(self, client):
        booking = create_test_booking(client)
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A, expires_in_minutes=120)
        expires = datetime.fromisoformat(bid["expires_at"]).replace(tzinfo=None)
        assert timedelta(minutes=119) < expires - before < timedelta(minutes=121)

    def test_expiry_window_capped(self, client):
        booking = create_test_booking(client)
        resp = client.post("/api/bids/", json={
            "booking_id": booking["booking_id"], "contractor_id": CONTRACTOR_A,
            "amount": 80, "eta_minutes": 30, "expires_in_minutes": 60 * 24 * 7,
        })
        assert resp.status_code == 422
        assert resp.json()["kind"] == "ValidationError"

    def test_duplicate_pending_bid_rejected(self, client):
        booking = create_test_booking(client)
        submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        resp = client.post("/api/bids/", json={
            "booking_id": booking["booking_id"], "contractor_id": CONTRACTOR_A, "amount": 75, "eta_minutes": 30,
        })
        assert resp.status_code == 409
        assert resp.json()["kind"] == "DuplicateBid"

    def test_rebid_allowed_after_expiry(self, client, db):
        booking = create_test_booking(client)
        old = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        _backdate(db, old["bid_id"])

        new = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A, amount=70)
        assert new["bid_id"] != old["bid_id"]
        assert client.get(f"/api/bids/{old['bid_id']}").json()["status"] == "expired"

    def test_non_positive_amount_rejected(self, client):
        booking = create_test_booking(client)
        resp = client.post("/api/bids/", json={
            "booking_id": booking["booking_id"], "contractor_id": CONTRACTOR_A, "amount": 0, "eta_minutes": 30,
        })
        assert resp.status_code == 422
        assert resp.json()["kind"] == "ValidationError"

    def test_non_positive_eta_rejected(self, client):
        booking = create_test_booking(client)
        resp = client.post("/api/bids/", json={
            "booking_id": booking["booking_id"], "contractor_id": CONTRACTOR_A, "amount": 50, "eta_minutes": 0,
        })
        assert resp.status_code == 422

    def test_bid_on_unknown_booking(self, client):
        resp = client.post("/api/bids/", json={
            "booking_id": "nope", "contractor_id": CONTRACTOR_A, "amount": 50, "eta_minutes": 10,
        })
        assert resp.status_code == 404

    def test_bid_on_assigned_booking_rejected(self, client):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        accept_test_bid(client, bid["bid_id"])
        resp = client.post("/api/bids/", json={
            "booking_id": booking["booking_id"], "contractor_id": CONTRACTOR_B, "amount": 50, "eta_minutes": 10,
        })
        assert resp.status_code == 409
        assert resp.json()["kind"] == "InvalidState"


class TestAcceptBid:

    def test_accept_rejects_siblings_and_assigns(self, client, publisher):
        booking = create_test_booking(client)
        first = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A, amount=80)
        second = submit_test_bid(client, booking["booking_id"], CONTRACTOR_B, amount=95)

        result = accept_test_bid(client, first["bid_id"])
        assert result["winning_bid"]["status"] == "accepted"
        assert result["booking"]["stage"] == "assigned"
        assert result["booking"]["contractor_id"] == CONTRACTOR_A
        assert result["booking"]["accepted_amount"] == 80
        assert result["booking"]["accepted_bid_id"] == first["bid_id"]

        loser = client.get(f"/api/bids/{second['bid_id']}").json()
        assert loser["status"] == "rejected"
        assert loser["rejection_reason"] == "another_bid_accepted"

        assert publisher.of_type("bid.accepted")[0]["bid_id"] == first["bid_id"]
        assert publisher.of_type("bid.rejected")[0]["bid_id"] == second["bid_id"]

    def test_second_acceptance_fails(self, client):
        booking = create_test_booking(client)
        first = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A, amount=80)
        second = submit_test_bid(client, booking["booking_id"], CONTRACTOR_B, amount=95)
        accept_test_bid(client, first["bid_id"])

        resp = client.post(f"/api/bids/{second['bid_id']}/accept", json={"customer_id": CUSTOMER})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "BidNoLongerAvailable"

    def test_accepting_twice_fails(self, client):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        accept_test_bid(client, bid["bid_id"])
        resp = client.post(f"/api/bids/{bid['bid_id']}/accept", json={"customer_id": CUSTOMER})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "BidNoLongerAvailable"

    def test_only_booking_customer_can_accept(self, client):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        resp = client.post(f"/api/bids/{bid['bid_id']}/accept", json={"customer_id": "intruder"})
        assert resp.status_code == 403
        assert resp.json()["kind"] == "NotBookingCustomer"
        assert client.get(f"/api/bids/{bid['bid_id']}").json()["status"] == "pending"

    def test_expired_bid_cannot_be_accepted(self, client, db):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        _backdate(db, bid["bid_id"])

        resp = client.post(f"/api/bids/{bid['bid_id']}/accept", json={"customer_id": CUSTOMER})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "BidNoLongerAvailable"
        assert client.get(f"/api/bids/{bid['bid_id']}").json()["status"] == "expired"
        assert client.get(f"/api/bookings/{booking['booking_id']}").json()["stage"] == "seeking_contractor"

    def test_accept_unknown_bid(self, client):
        resp = client.post("/api/bids/missing/accept", json={"customer_id": CUSTOMER})
        assert resp.status_code == 404


class TestRejectBid:

    def test_reject_single_bid(self, client, publisher):
        booking = create_test_booking(client)
        first = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        second = submit_test_bid(client, booking["booking_id"], CONTRACTOR_B)

        resp = client.post(f"/api/bids/{first['bid_id']}/reject", json={"customer_id": CUSTOMER, "reason": "too slow"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"
        assert resp.json()["rejection_reason"] == "too slow"
        assert client.get(f"/api/bids/{second['bid_id']}").json()["status"] == "pending"
        assert publisher.of_type("bid.rejected")[0]["reason"] == "too slow"

    def test_rejected_bid_is_terminal(self, client):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        client.post(f"/api/bids/{bid['bid_id']}/reject", json={"customer_id": CUSTOMER})

        resp = client.post(f"/api/bids/{bid['bid_id']}/accept", json={"customer_id": CUSTOMER})
        assert resp.status_code == 409
        resp = client.post(f"/api/bids/{bid['bid_id']}/reject", json={"customer_id": CUSTOMER})
        assert resp.status_code == 409

    def test_only_customer_can_reject(self, client):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        resp = client.post(f"/api/bids/{bid['bid_id']}/reject", json={"customer_id": CONTRACTOR_B})
        assert resp.status_code == 403


class TestListingAndExpiry:

    def test_bids_listed_cheapest_first(self, client):
        booking = create_test_booking(client)
        submit_test_bid(client, booking["booking_id"], CONTRACTOR_A, amount=120)
        submit_test_bid(client, booking["booking_id"], CONTRACTOR_B, amount=60)
        submit_test_bid(client, booking["booking_id"], CONTRACTOR_C, amount=95)

        amounts = [b["amount"] for b in client.get(f"/api/bookings/{booking['booking_id']}/bids").json()]
        assert amounts == [60, 95, 120]

    def test_listing_expires_stale_bids(self, client, db, publisher):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        _backdate(db, bid["bid_id"])

        bids = client.get(f"/api/bookings/{booking['booking_id']}/bids").json()
        assert bids[0]["status"] == "expired"
        assert publisher.of_type("bid.expired")[0]["bid_id"] == bid["bid_id"]

        pending = client.get(
            f"/api/bookings/{booking['booking_id']}/bids", params={"status_filter": "pending"},
        ).json()
        assert pending == []

    def test_sweep_endpoint(self, client, db):
        booking = create_test_booking(client)
        stale = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        fresh = submit_test_bid(client, booking["booking_id"], CONTRACTOR_B)
        _backdate(db, stale["bid_id"])

        resp = client.post("/api/bids/expire")
        assert resp.status_code == 200
        assert resp.json()["expired_bid_ids"] == [stale["bid_id"]]
        assert client.get(f"/api/bids/{fresh['bid_id']}").json()["status"] == "pending"

    def test_sweep_is_idempotent(self, client, db, publisher):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        later = datetime.now(timezone.utc) + timedelta(hours=1)

        assert bid_service.expire_stale_bids(db, publisher, now=later) == [bid["bid_id"]]
        assert bid_service.expire_stale_bids(db, publisher, now=later) == []
        assert len(publisher.of_type("bid.expired")) == 1
        stored = db.query(Bid).filter(Bid.bid_id == bid["bid_id"]).one()
        assert stored.status == BidStatus.expired

    def test_sweep_and_accept_agree_on_expiry(self, client, db, publisher):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        stored = db.query(Bid).filter(Bid.bid_id == bid["bid_id"]).one()
        boundary = stored.expires_at.replace(tzinfo=timezone.utc)

        # One instant before expiry the sweep leaves it alone; at expiry both paths treat it as gone
        assert bid_service.expire_stale_bids(db, publisher, now=boundary - timedelta(seconds=1)) == []
        assert bid_service.is_expired(stored, boundary)
        assert bid_service.expire_stale_bids(db, publisher, now=boundary) == [bid["bid_id"]]

    def test_contractor_bid_history(self, client):
        first = create_test_booking(client)
        second = create_test_booking(client)
        submit_test_bid(client, first["booking_id"], CONTRACTOR_A)
        submit_test_bid(client, second["booking_id"], CONTRACTOR_A)
        submit_test_bid(client, second["booking_id"], CONTRACTOR_B)

        mine = client.get("/api/bids/", params={"contractor_id": CONTRACTOR_A}).json()
        assert len(mine) == 2
        assert {b["contractor_id"] for b in mine} == {CONTRACTOR_A}


class TestExpirySweep:

    def test_sweep_once_uses_its_own_session(self, client, db):
        booking = create_test_booking(client)
        bid = submit_test_bid(client, booking["booking_id"], CONTRACTOR_A)
        _backdate(db, bid["bid_id"])

        assert bid_expiry.sweep_once() == 1
        assert bid_expiry.sweep_once() == 0
        assert client.get(f"/api/bids/{bid['bid_id']}").json()["status"] == "expired"

    def test_loop_survives_failures_and_stops(self, monkeypatch):
        calls = []

        def flaky_sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            return 0

        monkeypatch.setattr(bid_expiry, "sweep_once", flaky_sweep)

        async def run():
            stop = asyncio.Event()
            task = asyncio.create_task(bid_expiry.expiry_loop(stop, 0.01))
            await asyncio.sleep(0.1)
            stop.set()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(run())
        assert len(calls) >= 2
