"""Tests for the payment gate and settlement."""
from app.services import payment_service
from tests.conftest import (
    CONTRACTOR_A, CONTRACTOR_B, CUSTOMER,
    accept_test_bid, advance_to, assigned_booking, create_test_extra_parts,
    patch_stage, resolve_test_extra_parts, settle, submit_test_bid,
)


def _completed_booking(client, amount=80):
    booking = assigned_booking(client, amount=amount)
    advance_to(client, booking["booking_id"], CONTRACTOR_A, "work_completed")
    return booking


class TestPaymentStatus:

    def test_not_payable_before_completion(self, client):
        booking = assigned_booking(client)
        status = client.get(f"/api/payments/{booking['booking_id']}/status").json()
        assert status["can_pay"] is False
        assert status["stage"] == "assigned"
        assert "not awaiting payment" in status["blocked_reason"]

    def test_payable_after_completion(self, client):
        booking = _completed_booking(client)
        status = client.get(f"/api/payments/{booking['booking_id']}/status").json()
        assert status["can_pay"] is True
        assert status["blocked_reason"] is None
        assert status["payable_total"] == 80

    def test_pending_request_blocks(self, client):
        booking = assigned_booking(client)
        advance_to(client, booking["booking_id"], CONTRACTOR_A, "work_in_progress")
        create_test_extra_parts(client, booking["booking_id"])
        patch_stage(client, booking["booking_id"], "work_completed", CONTRACTOR_A, evidence=["after.jpg"])

        status = client.get(f"/api/payments/{booking['booking_id']}/status").json()
        assert status["stage"] == "awaiting_payment"
        assert status["can_pay"] is False
        assert status["pending_requests"] == 1
        assert "awaiting your decision" in status["blocked_reason"]

    def test_can_pay_follows_pending_requests(self, client, db):
        booking = _completed_booking(client)
        assert payment_service.can_pay(db, booking["booking_id"]) is True
        req = create_test_extra_parts(client, booking["booking_id"])
        assert payment_service.can_pay(db, booking["booking_id"]) is False
        resolve_test_extra_parts(client, req["request_id"], "reject")
        assert payment_service.can_pay(db, booking["booking_id"]) is True

    def test_unknown_booking(self, client):
        assert client.get("/api/payments/missing/status").status_code == 404


class TestSettlePayment:

    def test_settle_base_amount(self, client, gateway, publisher):
        booking = _completed_booking(client)
        resp = settle(client, booking["booking_id"])
        assert resp.status_code == 200
        body = resp.json()
        assert body["booking"]["stage"] == "paid"
        assert body["booking"]["final_amount"] == 80
        assert body["settlement"]["total_amount"] == 80
        assert body["settlement"]["contractor_id"] == CONTRACTOR_A
        assert body["settlement"]["payment_reference"] == "test_1"
        assert len(gateway.charges) == 1
        assert publisher.of_type("payment.settled")[0]["total_amount"] == "80.00"
        assert publisher.of_type("booking.stage_changed")[-1]["to_stage"] == "paid"

    def test_pending_request_blocks_settlement(self, client, gateway):
        booking = _completed_booking(client)
        create_test_extra_parts(client, booking["booking_id"])
        resp = settle(client, booking["booking_id"])
        assert resp.status_code == 409
        assert resp.json()["kind"] == "PaymentBlocked"
        assert gateway.charges == []
        assert client.get(f"/api/bookings/{booking['booking_id']}").json()["stage"] == "awaiting_payment"

    def test_approved_extras_added_to_total(self, client, gateway):
        booking = _completed_booking(client, amount=80)
        req = create_test_extra_parts(client, booking["booking_id"], unit_price=45)
        resolve_test_extra_parts(client, req["request_id"], "approve")

        body = settle(client, booking["booking_id"]).json()
        assert body["settlement"]["base_amount"] == 80
        assert body["settlement"]["extras_amount"] == 45
        assert body["settlement"]["total_amount"] == 125
        assert gateway.charges[0][2] == 125

    def test_rejected_and_disregarded_parts_not_billed(self, client):
        booking = _completed_booking(client, amount=80)
        rejected = create_test_extra_parts(client, booking["booking_id"], unit_price=30)
        dropped = create_test_extra_parts(client, booking["booking_id"], unit_price=20)
        resolve_test_extra_parts(client, rejected["request_id"], "reject")
        resolve_test_extra_parts(client, dropped["request_id"], "disregard", confirm=True)

        body = settle(client, booking["booking_id"]).json()
        assert body["settlement"]["total_amount"] == 80

    def test_appealed_parts_billed_and_escrowed(self, client):
        booking = _completed_booking(client, amount=80)
        req = create_test_extra_parts(client, booking["booking_id"], unit_price=40)
        resolve_test_extra_parts(client, req["request_id"], "pay_and_appeal", appeal_reason="Overpriced")

        body = settle(client, booking["booking_id"]).json()
        assert body["settlement"]["total_amount"] == 120
        assert body["settlement"]["escrowed_amount"] == 40

    def test_resettle_returns_existing_settlement(self, client, gateway, publisher):
        booking = _completed_booking(client)
        first = settle(client, booking["booking_id"]).json()
        second = settle(client, booking["booking_id"])
        assert second.status_code == 200
        assert second.json()["settlement"]["settlement_id"] == first["settlement"]["settlement_id"]
        assert len(gateway.charges) == 1
        assert len(publisher.of_type("payment.settled")) == 1

    def test_only_customer_can_pay(self, client, gateway):
        booking = _completed_booking(client)
        resp = settle(client, booking["booking_id"], payer_id=CONTRACTOR_A)
        assert resp.status_code == 403
        assert resp.json()["kind"] == "NotBookingCustomer"
        assert gateway.charges == []

    def test_cannot_pay_before_completion(self, client):
        booking = assigned_booking(client)
        resp = settle(client, booking["booking_id"])
        assert resp.status_code == 409
        assert resp.json()["kind"] == "InvalidState"

    def test_declined_card_leaves_booking_unpaid(self, client, gateway):
        booking = _completed_booking(client)
        gateway.decline = True
        resp = settle(client, booking["booking_id"])
        assert resp.status_code == 409
        assert resp.json()["kind"] == "PaymentDeclined"
        assert client.get(f"/api/bookings/{booking['booking_id']}").json()["stage"] == "awaiting_payment"
        assert client.get(f"/api/payments/{booking['booking_id']}/settlement").status_code == 404

        gateway.decline = False
        assert settle(client, booking["booking_id"]).status_code == 200

    def test_settlement_lookup(self, client):
        booking = _completed_booking(client)
        settle(client, booking["booking_id"])
        resp = client.get(f"/api/payments/{booking['booking_id']}/settlement")
        assert resp.status_code == 200
        assert resp.json()["payer_id"] == CUSTOMER

    def test_paid_booking_is_archived(self, client):
        booking = _completed_booking(client)
        settle(client, booking["booking_id"])
        paid = client.get(f"/api/bookings/{booking['booking_id']}").json()
        assert paid["archived_at"] is not None
        assert paid["paid_at"] is not None

    def test_forfeited_contractors_extras_excluded(self, client):
        booking = assigned_booking(client, contractor_id=CONTRACTOR_A, amount=80)
        booking_id = booking["booking_id"]
        advance_to(client, booking_id, CONTRACTOR_A, "work_started")
        req = create_test_extra_parts(client, booking_id, contractor_id=CONTRACTOR_A, unit_price=30)
        resolve_test_extra_parts(client, req["request_id"], "approve")

        resp = client.post(f"/api/bookings/{booking_id}/forfeit", json={"contractor_id": CONTRACTOR_A})
        assert resp.status_code == 200

        bid = submit_test_bid(client, booking_id, CONTRACTOR_B, amount=90)
        accept_test_bid(client, bid["bid_id"])
        advance_to(client, booking_id, CONTRACTOR_B, "work_completed")

        body = settle(client, booking_id).json()
        assert body["settlement"]["contractor_id"] == CONTRACTOR_B
        assert body["settlement"]["total_amount"] == 90
