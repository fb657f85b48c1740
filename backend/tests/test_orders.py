"""
Order workflow tests.

Verifies:
- Checkout (authenticated and guest) creates the gateway order first and
  persists nothing when the gateway fails
- Payment verification: signature, replay, conflicting payment, amount
  and gateway-id cross-checks, stock decrement, emails
- A payment that lands on a cancelled order is kept and flagged for refund
- Fulfilment status: transition table, timestamps, payment status untouched
- Bulk status updates are all-or-nothing
- Guest lookup and its throttling
- Admin notes and tracking
"""

from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from storefront.extensions import db
from storefront.models import Order, OrderTimeline, Product, ProductVariant
from storefront.services import order_service, settings_service, timeline_service
from storefront.services.errors import (
    ConflictError,
    InvalidRequestError,
    InvalidTransitionError,
    PaymentVerificationError,
)
from conftest import auth_headers, checkout_payload, sign


def place_order(client, headers, product, variant, **overrides):
    response = client.post("/api/orders", json=checkout_payload(product, variant, **overrides), headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def pay(client, fake_gateway, created, payment_id="pay_0001", signature=None):
    fake_gateway.capture(payment_id, created["gateway_order_id"])
    return client.post(
        f"/api/orders/{created['order_id']}/verify-payment",
        json={
            "razorpay_order_id": created["gateway_order_id"],
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature or sign(created["gateway_order_id"], payment_id),
        },
    )


def notifications(event, outcome):
    return REGISTRY.get_sample_value(
        "storefront_notifications_total", {"event": event, "outcome": outcome}
    ) or 0.0


# =============================================================================
# CHECKOUT
# =============================================================================

class TestCheckout:
    def test_create_order_returns_payment_handle(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)

        assert created["order_number"].startswith("ORD-")
        assert created["gateway_key_id"] == "rzp_test_key"
        assert created["amount"] == 120000
        assert created["currency"] == "INR"

        sent = fake_gateway.orders[created["gateway_order_id"]]
        assert sent["amount"] == 120000
        assert sent["receipt"] == created["order_number"]

        order = db.session.get(Order, created["order_id"])
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.razorpay_order_id == created["gateway_order_id"]
        assert len(order.items) == 1
        assert str(order.items[0].total) == "1200.00"

    def test_creation_writes_one_timeline_entry(self, client, customer_headers, product, variant):
        created = place_order(client, customer_headers, product, variant)

        entries = order_service.timeline_entries(created["order_id"])
        assert [e.title for e in entries] == ["Order Created"]
        assert entries[0].type == timeline_service.TYPE_STATUS_CHANGE

    def test_guest_order_uses_shipping_email(self, client, product, variant):
        payload = checkout_payload(product, variant)
        payload["shipping_address"]["email"] = "Guest@Example.com"

        response = client.post("/api/orders/guest", json=payload)
        assert response.status_code == 201

        order = db.session.get(Order, response.get_json()["order_id"])
        assert order.user_id is None
        assert order.guest_email == "guest@example.com"

    def test_guest_order_requires_email(self, client, product, variant):
        payload = checkout_payload(product, variant)
        del payload["shipping_address"]["email"]

        response = client.post("/api/orders/guest", json=payload)
        assert response.status_code == 400

    @pytest.mark.parametrize("field", ["product_id", "variant_id"])
    def test_unknown_catalog_reference_rejected_before_gateway(
        self, client, customer_headers, product, variant, fake_gateway, field,
    ):
        payload = checkout_payload(product, variant)
        payload["items"][0][field] = 9999

        response = client.post("/api/orders", json=payload, headers=customer_headers)

        assert response.status_code == 400
        assert f"Unknown {field}" in response.get_json()["error"]
        assert fake_gateway.requests == []
        assert db.session.query(Order).count() == 0

    def test_variant_of_another_product_rejected(self, client, customer_headers, product, variant, fake_gateway):
        other = Product(name="Canvas Belt", sku="BELT-1", base_price=Decimal("300.00"), stock=5)
        db.session.add(other)
        db.session.commit()
        payload = checkout_payload(other, variant)

        response = client.post("/api/orders", json=payload, headers=customer_headers)

        assert response.status_code == 400
        assert "does not belong" in response.get_json()["error"]
        assert fake_gateway.requests == []

    def test_taken_order_numbers_are_skipped(self, monkeypatch, client, customer_headers, product, variant):
        first = place_order(client, customer_headers, product, variant)
        monkeypatch.setattr(order_service, "generate_order_number", lambda: first["order_number"])

        response = client.post("/api/orders", json=checkout_payload(product, variant), headers=customer_headers)

        assert response.status_code == 409
        assert "Could not allocate" in response.get_json()["error"]
        assert db.session.query(Order).count() == 1

    def test_order_number_race_settled_by_unique_constraint(
        self, monkeypatch, client, customer_headers, product, variant, fake_gateway,
    ):
        first = place_order(client, customer_headers, product, variant)
        # Second checkout passed the pre-check before the first one committed
        monkeypatch.setattr(order_service, "_reserve_order_number", lambda: first["order_number"])

        response = client.post("/api/orders", json=checkout_payload(product, variant), headers=customer_headers)

        assert response.status_code == 409
        assert "collision" in response.get_json()["error"]
        assert db.session.query(Order).count() == 1
        assert len(fake_gateway.orders) == 2

    def test_gateway_failure_persists_nothing(self, client, customer_headers, product, variant, fake_gateway):
        fake_gateway.fail_orders = True

        response = client.post("/api/orders", json=checkout_payload(product, variant), headers=customer_headers)

        assert response.status_code == 502
        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderTimeline).count() == 0

    @pytest.mark.parametrize("overrides,message", [
        ({"items": []}, "Cart is empty"),
        ({"total": "0"}, "greater than zero"),
        ({"total": "-5"}, "cannot be negative"),
        ({"shipping_address": {"full_name": "A"}}, "missing"),
    ])
    def test_invalid_checkout_rejected(self, client, customer_headers, product, variant, overrides, message):
        response = client.post(
            "/api/orders", json=checkout_payload(product, variant, **overrides), headers=customer_headers
        )
        assert response.status_code == 400
        assert message in response.get_json()["error"]

    def test_authenticated_checkout_requires_token(self, client, product, variant):
        response = client.post("/api/orders", json=checkout_payload(product, variant))
        assert response.status_code == 401


# =============================================================================
# PAYMENT VERIFICATION
# =============================================================================

class TestVerifyPayment:
    def test_valid_payment_confirms_order(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)

        response = pay(client, fake_gateway, created)

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["order"]["status"] == "confirmed"
        assert body["order"]["payment_status"] == "paid"
        assert body["order"]["razorpay_payment_id"] == "pay_0001"
        assert body["order"]["payment_method"] == "upi"

    def test_payment_writes_one_payment_entry(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        pay(client, fake_gateway, created)

        assert timeline_service.count_for_order(created["order_id"], timeline_service.TYPE_PAYMENT) == 1

    def test_payment_decrements_stock(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        pay(client, fake_gateway, created)

        assert db.session.get(ProductVariant, variant.id).stock == 8

    def test_wrong_secret_rejected_without_changes(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)

        response = pay(
            client, fake_gateway, created,
            signature=sign(created["gateway_order_id"], "pay_0001", secret="not-the-secret"),
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == PaymentVerificationError.CLIENT_MESSAGE
        order = db.session.get(Order, created["order_id"])
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert timeline_service.count_for_order(order.id, timeline_service.TYPE_PAYMENT) == 0

    def test_replay_is_idempotent(self, client, customer_headers, product, variant, fake_gateway, fake_mail):
        created = place_order(client, customer_headers, product, variant)
        assert pay(client, fake_gateway, created).status_code == 200
        mails_after_first = len(fake_mail.sent)

        response = pay(client, fake_gateway, created)

        assert response.status_code == 200
        assert timeline_service.count_for_order(created["order_id"], timeline_service.TYPE_PAYMENT) == 1
        assert db.session.get(ProductVariant, variant.id).stock == 8
        assert len(fake_mail.sent) == mails_after_first

    def test_different_payment_for_paid_order_conflicts(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        pay(client, fake_gateway, created)

        response = pay(client, fake_gateway, created, payment_id="pay_0002")

        assert response.status_code == 409
        assert db.session.get(Order, created["order_id"]).razorpay_payment_id == "pay_0001"

    def test_amount_mismatch_rejected(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        fake_gateway.capture("pay_0001", created["gateway_order_id"], amount=100)

        response = client.post(
            f"/api/orders/{created['order_id']}/verify-payment",
            json={
                "razorpay_order_id": created["gateway_order_id"],
                "razorpay_payment_id": "pay_0001",
                "razorpay_signature": sign(created["gateway_order_id"], "pay_0001"),
            },
        )

        assert response.status_code == 400
        assert db.session.get(Order, created["order_id"]).payment_status == "pending"

    def test_uncaptured_payment_rejected(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        fake_gateway.capture("pay_0001", created["gateway_order_id"], status="failed")

        with pytest.raises(PaymentVerificationError) as exc:
            order_service.verify_payment(
                created["order_id"], created["gateway_order_id"], "pay_0001",
                sign(created["gateway_order_id"], "pay_0001"),
            )
        assert "failed" in exc.value.reason

    def test_gateway_order_id_mismatch_rejected(self, client, customer_headers, product, variant, fake_gateway):
        first = place_order(client, customer_headers, product, variant)
        second = place_order(client, customer_headers, product, variant)

        # Valid signature, but for the other order's gateway id
        with pytest.raises(PaymentVerificationError):
            order_service.verify_payment(
                first["order_id"], second["gateway_order_id"], "pay_0001",
                sign(second["gateway_order_id"], "pay_0001"),
            )

    def test_missing_fields_rejected(self, client, customer_headers, product, variant):
        created = place_order(client, customer_headers, product, variant)

        response = client.post(
            f"/api/orders/{created['order_id']}/verify-payment",
            json={"razorpay_order_id": created["gateway_order_id"]},
        )
        assert response.status_code == 400

    def test_unknown_order_is_404(self, client, fake_gateway):
        response = client.post(
            "/api/orders/9999/verify-payment",
            json={
                "razorpay_order_id": "order_x",
                "razorpay_payment_id": "pay_x",
                "razorpay_signature": sign("order_x", "pay_x"),
            },
        )
        assert response.status_code == 404

    def test_gateway_unreachable_during_cross_check(self, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        fake_gateway.fail_payments = True

        response = pay(client, fake_gateway, created)

        assert response.status_code == 502
        assert db.session.get(Order, created["order_id"]).payment_status == "pending"

    def test_cross_check_can_be_disabled(self, app, client, customer_headers, product, variant, fake_gateway):
        created = place_order(client, customer_headers, product, variant)
        app.config["PAYMENT_VERIFY_AMOUNT"] = False
        try:
            response = client.post(
                f"/api/orders/{created['order_id']}/verify-payment",
                json={
                    "razorpay_order_id": created["gateway_order_id"],
                    "razorpay_payment_id": "pay_unknown",
                    "razorpay_signature": sign(created["gateway_order_id"], "pay_unknown"),
                },
            )
        finally:
            app.config["PAYMENT_VERIFY_AMOUNT"] = True

        assert response.status_code == 200
        assert response.get_json()["order"]["payment_method"] == "razorpay"

    def test_confirmation_email_sent(self, client, customer_headers, product, variant, fake_gateway, fake_mail):
        created = place_order(client, customer_headers, product, variant)
        before = notifications("order_confirmation", "sent")

        pay(client, fake_gateway, created)

        assert f"Order Confirmed - #{created['order_number']}" in fake_mail.subjects()
        assert notifications("order_confirmation", "sent") == before + 1

    def test_admin_email_goes_to_store_email(self, client, customer_headers, product, variant, fake_gateway, fake_mail):
        settings_service.update_settings("store", {"email": "owner@shop.test"})
        created = place_order(client, customer_headers, product, variant)

        pay(client, fake_gateway, created)

        admin_mail = fake_mail.to("owner@shop.test")
        assert [m["subject"] for m in admin_mail] == [f"New Order #{created['order_number']}"]

    def test_no_admin_email_without_store_email(self, client, customer_headers, product, variant, fake_gateway, fake_mail):
        created = place_order(client, customer_headers, product, variant)
        pay(client, fake_gateway, created)

        assert not any(s.startswith("New Order") for s in fake_mail.subjects())

    def test_email_failure_does_not_fail_payment(self, client, customer_headers, product, variant, fake_gateway, fake_mail):
        fake_mail.fail = True
        created = place_order(client, customer_headers, product, variant)
        before = notifications("order_confirmation", "failed")

        response = pay(client, fake_gateway, created)

        assert response.status_code == 200
        assert notifications("order_confirmation", "failed") == before + 1

    def test_payment_after_cancellation_is_recorded_for_refund(
        self, client, customer_headers, product, variant, fake_gateway, fake_mail,
    ):
        settings_service.update_settings("store", {"email": "owner@shop.test"})
        created = place_order(client, customer_headers, product, variant)
        order_service.update_status(created["order_id"], "cancelled")

        response = pay(client, fake_gateway, created)

        assert response.status_code == 200
        order = db.session.get(Order, created["order_id"])
        assert order.status == "cancelled"
        assert order.payment_status == "paid"
        assert order.razorpay_payment_id == "pay_0001"
        entries = (
            db.session.query(OrderTimeline)
            .filter_by(order_id=order.id, type=timeline_service.TYPE_PAYMENT)
            .all()
        )
        assert len(entries) == 1
        assert entries[0].details["refund_required"] is True
        assert db.session.get(ProductVariant, variant.id).stock == 10
        assert [m["subject"] for m in fake_mail.to("owner@shop.test")] == [
            f"Refund Required - Order #{created['order_number']}"
        ]
        assert not any(s.startswith("Order Confirmed") for s in fake_mail.subjects())

    def test_payment_after_cancellation_replay_is_idempotent(
        self, client, customer_headers, product, variant, fake_gateway,
    ):
        created = place_order(client, customer_headers, product, variant)
        order_service.update_status(created["order_id"], "cancelled")
        pay(client, fake_gateway, created)

        response = pay(client, fake_gateway, created)

        assert response.status_code == 200
        assert timeline_service.count_for_order(created["order_id"], timeline_service.TYPE_PAYMENT) == 1


# =============================================================================
# FULFILMENT STATUS
# =============================================================================

@pytest.fixture
def paid_order(client, customer_headers, product, variant, fake_gateway):
    created = place_order(client, customer_headers, product, variant)
    assert pay(client, fake_gateway, created).status_code == 200
    return db.session.get(Order, created["order_id"])


class TestStatusUpdates:
    def test_ship_with_tracking(self, client, admin_headers, paid_order, fake_mail):
        response = client.post(
            f"/api/admin/orders/{paid_order.id}/status",
            json={"status": "shipped", "tracking_number": "AWB123", "notify_customer": True},
            headers=admin_headers,
        )

        assert response.status_code == 200
        order = response.get_json()["order"]
        assert order["status"] == "shipped"
        assert order["tracking_number"] == "AWB123"
        assert order["shipped_at"] is not None
        assert f"Your Order #{paid_order.order_number} Has Shipped!" in fake_mail.subjects()

    def test_shipped_at_not_overwritten(self, paid_order):
        order_service.update_status(paid_order.id, "shipped")
        first = db.session.get(Order, paid_order.id).shipped_at

        order_service.update_status(paid_order.id, "shipped")

        assert db.session.get(Order, paid_order.id).shipped_at == first
        titles = [e.title for e in order_service.timeline_entries(paid_order.id)]
        assert titles.count("Order Shipped") == 2

    def test_cancel_paid_order_keeps_payment_status(self, client, admin_headers, paid_order, fake_mail):
        response = client.post(
            f"/api/admin/orders/{paid_order.id}/status",
            json={"status": "cancelled", "notify_customer": True},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["order"]["payment_status"] == "paid"
        assert f"Your Order #{paid_order.order_number} Has Been Cancelled" in fake_mail.subjects()

    def test_email_failure_does_not_fail_status_update(self, client, admin_headers, paid_order, fake_mail):
        fake_mail.fail = True

        response = client.post(
            f"/api/admin/orders/{paid_order.id}/status",
            json={"status": "cancelled", "notify_customer": True},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert db.session.get(Order, paid_order.id).status == "cancelled"

    def test_no_email_without_notify_flag(self, paid_order, fake_mail):
        sent_before = len(fake_mail.sent)
        order_service.update_status(paid_order.id, "processing")
        assert len(fake_mail.sent) == sent_before

    @pytest.mark.parametrize("path,target", [
        (["cancelled"], "confirmed"),
        (["shipped", "delivered"], "cancelled"),
        (["shipped"], "processing"),
        ([], "pending"),
    ])
    def test_illegal_transitions_rejected(self, paid_order, path, target):
        for status in path:
            order_service.update_status(paid_order.id, status)
        entries_before = len(order_service.timeline_entries(paid_order.id))

        with pytest.raises(InvalidTransitionError):
            order_service.update_status(paid_order.id, target)

        assert len(order_service.timeline_entries(paid_order.id)) == entries_before

    def test_unknown_status_rejected(self, client, admin_headers, paid_order):
        response = client.post(
            f"/api/admin/orders/{paid_order.id}/status", json={"status": "lost"}, headers=admin_headers
        )
        assert response.status_code == 400

    def test_pending_order_cannot_ship(self, client, customer_headers, product, variant):
        created = place_order(client, customer_headers, product, variant)
        with pytest.raises(InvalidTransitionError):
            order_service.update_status(created["order_id"], "shipped")

    def test_customer_cannot_use_admin_routes(self, client, customer_headers, paid_order):
        response = client.post(
            f"/api/admin/orders/{paid_order.id}/status", json={"status": "shipped"}, headers=customer_headers
        )
        assert response.status_code == 403


class TestBulkStatus:
    def test_bulk_update_all_valid(self, client, admin_headers, customer_headers, product, variant, fake_gateway):
        ids = []
        for n in range(3):
            created = place_order(client, customer_headers, product, variant)
            pay(client, fake_gateway, created, payment_id=f"pay_{n}")
            ids.append(created["order_id"])

        response = client.post(
            "/api/admin/orders/bulk-status", json={"order_ids": ids, "status": "processing"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.get_json()["updated"] == 3
        for order_id in ids:
            assert db.session.get(Order, order_id).status == "processing"
            assert "Bulk Status Update" in [e.title for e in order_service.timeline_entries(order_id)]

    def test_one_illegal_transition_rejects_batch(self, client, customer_headers, product, variant, fake_gateway):
        paid = place_order(client, customer_headers, product, variant)
        pay(client, fake_gateway, paid)
        pending = place_order(client, customer_headers, product, variant)

        with pytest.raises(InvalidTransitionError):
            order_service.bulk_update_status([paid["order_id"], pending["order_id"]], "shipped")

        assert db.session.get(Order, paid["order_id"]).status == "confirmed"
        assert db.session.get(Order, pending["order_id"]).status == "pending"

    def test_empty_selection_rejected(self):
        with pytest.raises(InvalidRequestError):
            order_service.bulk_update_status([], "shipped")


# =============================================================================
# NOTES AND TRACKING
# =============================================================================

class TestNotesAndTracking:
    def test_internal_note_appends_to_admin_notes(self, paid_order):
        order_service.add_note(paid_order.id, "Called customer")
        order_service.add_note(paid_order.id, "Left voicemail")

        order = db.session.get(Order, paid_order.id)
        lines = order.admin_notes.split("\n")
        assert len(lines) == 2
        assert lines[0].startswith("[") and lines[0].endswith("] Called customer")
        note = order_service.timeline_entries(paid_order.id)[-1]
        assert note.type == timeline_service.TYPE_NOTE
        assert note.is_public is False

    def test_public_note_visible_to_customer(self, client, customer_headers, paid_order):
        order_service.add_note(paid_order.id, "Packed with care", is_public=True)
        order_service.add_note(paid_order.id, "Fraud check passed")

        response = client.get(f"/api/orders/{paid_order.id}", headers=customer_headers)

        descriptions = [e["description"] for e in response.get_json()["order"]["timeline"]]
        assert "Packed with care" in descriptions
        assert "Fraud check passed" not in descriptions
        assert db.session.get(Order, paid_order.id).admin_notes.endswith("Fraud check passed")

    def test_empty_note_rejected(self, paid_order):
        with pytest.raises(InvalidRequestError):
            order_service.add_note(paid_order.id, "   ")

    def test_tracking_update_notifies_by_default(self, client, admin_headers, paid_order, fake_mail):
        response = client.post(
            f"/api/admin/orders/{paid_order.id}/tracking",
            json={"tracking_number": "AWB9", "carrier": "BlueDart"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["order"]["tracking_number"] == "AWB9"
        assert response.get_json()["order"]["status"] == "confirmed"
        assert fake_mail.to("asha@example.com")[-1]["subject"].endswith("Has Shipped!")
        entry = order_service.timeline_entries(paid_order.id)[-1]
        assert entry.title == "Tracking Updated"
        assert "BlueDart" in entry.description


# =============================================================================
# CUSTOMER AND GUEST READS
# =============================================================================

class TestReads:
    def test_customer_sees_only_own_orders(self, client, customer_headers, other_customer_headers, paid_order):
        mine = client.get("/api/orders/mine", headers=customer_headers).get_json()["orders"]
        theirs = client.get("/api/orders/mine", headers=other_customer_headers).get_json()["orders"]

        assert [o["id"] for o in mine] == [paid_order.id]
        assert theirs == []
        assert client.get(f"/api/orders/{paid_order.id}", headers=other_customer_headers).status_code == 404

    def test_admin_detail_includes_private_timeline(self, client, admin_headers, paid_order):
        order_service.add_note(paid_order.id, "internal only")

        order = client.get(f"/api/admin/orders/{paid_order.id}", headers=admin_headers).get_json()["order"]

        assert "internal only" in [e["description"] for e in order["timeline"]]
        assert "admin_notes" in order

    def test_admin_list_filters_by_status(self, client, admin_headers, paid_order, customer_headers, product, variant):
        place_order(client, customer_headers, product, variant)

        confirmed = client.get("/api/admin/orders?status=confirmed", headers=admin_headers).get_json()["orders"]
        assert [o["id"] for o in confirmed] == [paid_order.id]


class TestGuestLookup:
    @pytest.fixture
    def guest_order(self, client, product, variant):
        response = client.post("/api/orders/guest", json=checkout_payload(product, variant))
        assert response.status_code == 201
        return response.get_json()

    def test_lookup_is_case_insensitive_on_email(self, client, guest_order):
        response = client.post(
            "/api/orders/guest/lookup",
            json={"order_number": guest_order["order_number"], "email": "  ASHA@example.COM "},
        )

        assert response.status_code == 200
        order = response.get_json()["order"]
        assert order["order_number"] == guest_order["order_number"]
        assert [e["title"] for e in order["timeline"]] == ["Order Created"]

    def test_wrong_email_is_404(self, client, guest_order):
        response = client.post(
            "/api/orders/guest/lookup",
            json={"order_number": guest_order["order_number"], "email": "someone@example.com"},
        )
        assert response.status_code == 404

    def test_repeated_failures_are_throttled(self, client, guest_order):
        for _ in range(10):
            response = client.post(
                "/api/orders/guest/lookup", json={"order_number": "ORD-NOPE", "email": "asha@example.com"}
            )
            assert response.status_code == 404

        response = client.post(
            "/api/orders/guest/lookup",
            json={"order_number": guest_order["order_number"], "email": "asha@example.com"},
        )

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    def test_member_orders_not_visible_to_guest_lookup(self, client, paid_order):
        response = client.post(
            "/api/orders/guest/lookup",
            json={"order_number": paid_order.order_number, "email": "asha@example.com"},
        )
        assert response.status_code == 404
