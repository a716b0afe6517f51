"""Tests for appeals and the contractor earnings they hold back."""
from tests.conftest import (
    CONTRACTOR_A, CONTRACTOR_B, CUSTOMER,
    advance_to, assigned_booking, create_test_extra_parts, resolve_test_extra_parts, settle,
)


def _appealed_booking(client, amount=100, part_price=40):
    """A completed booking with one extra part paid under appeal."""
    booking = assigned_booking(client, amount=amount)
    booking_id = booking["booking_id"]
    advance_to(client, booking_id, CONTRACTOR_A, "work_in_progress")
    req = create_test_extra_parts(client, booking_id, unit_price=part_price)
    body = resolve_test_extra_parts(
        client, req["request_id"], "pay_and_appeal", appeal_reason="Not sure this was needed",
    ).json()
    _complete(client, booking_id)
    return booking_id, body["appeal"]


def _complete(client, booking_id):
    resp = client.patch(f"/api/bookings/{booking_id}/status", json={
        "stage": "work_completed", "contractor_id": CONTRACTOR_A, "evidence": ["after.jpg"],
    })
    assert resp.status_code == 200, resp.text


def _resolve(client, appeal_id, outcome, admin_response=None):
    return client.post(f"/api/appeals/{appeal_id}/resolve", json={"outcome": outcome, "admin_response": admin_response})


class TestAppeals:

    def test_appeal_listed(self, client):
        booking_id, appeal = _appealed_booking(client)
        by_booking = client.get("/api/appeals/", params={"booking_id": booking_id}).json()
        assert [a["appeal_id"] for a in by_booking] == [appeal["appeal_id"]]

        by_contractor = client.get("/api/appeals/", params={"contractor_id": CONTRACTOR_A}).json()
        assert len(by_contractor) == 1
        assert client.get("/api/appeals/", params={"contractor_id": CONTRACTOR_B}).json() == []

        fetched = client.get(f"/api/appeals/{appeal['appeal_id']}").json()
        assert fetched["customer_id"] == CUSTOMER
        assert fetched["reason"] == "Not sure this was needed"

    def test_resolve_upheld(self, client, publisher):
        _, appeal = _appealed_booking(client)
        resp = _resolve(client, appeal["appeal_id"], "upheld", "Part was not required")
        assert resp.status_code == 200
        assert resp.json()["status"] == "upheld"
        assert resp.json()["admin_response"] == "Part was not required"
        assert publisher.of_type("appeal.resolved")[0]["status"] == "upheld"

    def test_resolution_is_final(self, client, publisher):
        _, appeal = _appealed_booking(client)
        _resolve(client, appeal["appeal_id"], "denied")
        again = _resolve(client, appeal["appeal_id"], "denied")
        assert again.status_code == 200
        assert len(publisher.of_type("appeal.resolved")) == 1

        resp = _resolve(client, appeal["appeal_id"], "upheld")
        assert resp.status_code == 409
        assert resp.json()["kind"] == "InvalidState"

    def test_invalid_outcome(self, client):
        _, appeal = _appealed_booking(client)
        assert _resolve(client, appeal["appeal_id"], "open").status_code == 422
        assert _resolve(client, appeal["appeal_id"], "maybe").status_code == 422

    def test_unknown_appeal(self, client):
        assert client.get("/api/appeals/missing").status_code == 404
        assert _resolve(client, "missing", "denied").status_code == 404


class TestContractorEarnings:

    def test_no_paid_jobs(self, client):
        earnings = client.get(f"/api/appeals/earnings/{CONTRACTOR_A}").json()
        assert earnings["paid_bookings"] == 0
        assert earnings["gross"] == 0
        assert earnings["released"] == 0

    def test_open_appeal_holds_escrow(self, client):
        booking_id, _ = _appealed_booking(client, amount=100, part_price=40)
        assert settle(client, booking_id).status_code == 200

        earnings = client.get(f"/api/appeals/earnings/{CONTRACTOR_A}").json()
        assert earnings["paid_bookings"] == 1
        assert earnings["gross"] == 140
        assert earnings["escrow_held"] == 40
        assert earnings["escrow_refunded"] == 0
        assert earnings["released"] == 100

    def test_upheld_appeal_refunds_escrow(self, client):
        booking_id, appeal = _appealed_booking(client, amount=100, part_price=40)
        settle(client, booking_id)
        _resolve(client, appeal["appeal_id"], "upheld")

        earnings = client.get(f"/api/appeals/earnings/{CONTRACTOR_A}").json()
        assert earnings["escrow_held"] == 0
        assert earnings["escrow_refunded"] == 40
        assert earnings["released"] == 100

    def test_denied_appeal_releases_escrow(self, client):
        booking_id, appeal = _appealed_booking(client, amount=100, part_price=40)
        settle(client, booking_id)
        _resolve(client, appeal["appeal_id"], "denied")

        earnings = client.get(f"/api/appeals/earnings/{CONTRACTOR_A}").json()
        assert earnings["escrow_held"] == 0
        assert earnings["escrow_refunded"] == 0
        assert earnings["released"] == 140

    def test_unpaid_bookings_not_counted(self, client):
        _appealed_booking(client)
        earnings = client.get(f"/api/appeals/earnings/{CONTRACTOR_A}").json()
        assert earnings["paid_bookings"] == 0
        assert earnings["escrow_held"] == 0
