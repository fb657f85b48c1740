"""
Abandoned cart recovery tests.

Verifies:
- Capture upserts one live record per email and keeps its token
- Recovery token checks: unknown, expired, already recovered
- capture-mine pricing from the server-side cart
- The recovery batch: eligibility, ordering, limits, flag only on success
- Cron endpoint authorization and cleanup of expired carts
- Admin stats
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from storefront.extensions import db
from storefront.models import AbandonedCart, Cart, CartItem
from storefront.services import abandoned_cart_service
from storefront.services.errors import InvalidRequestError, NotFoundError, UpstreamError
from storefront.time_utils import utcnow
from conftest import auth_headers


CART_LINES = [
    {"product_id": 1, "variant_id": None, "name": "Linen Shirt", "price": "600.00", "quantity": 2},
]


def capture(email="shopper@example.com", **kwargs):
    return abandoned_cart_service.capture(email, kwargs.pop("cart_data", CART_LINES), **kwargs)


def age(cart, hours):
    """Pretend `cart` was captured `hours` ago."""
    cart.created_at = utcnow() - timedelta(hours=hours)
    db.session.commit()
    return cart


def abandoned_cart_sent():
    return REGISTRY.get_sample_value(
        "storefront_notifications_total", {"event": "abandoned_cart", "outcome": "sent"}
    ) or 0.0


# =============================================================================
# CAPTURE
# =============================================================================

class TestCapture:
    def test_capture_computes_total(self):
        cart = capture()

        assert cart.total_value == Decimal("1200.00")
        assert cart.cart_data[0]["price"] == "600.00"
        assert len(cart.recovery_token) == 64
        assert cart.expires_at > utcnow() + timedelta(days=6)

    def test_second_capture_updates_live_record(self):
        first = capture(email="Shopper@Example.com")
        token = first.recovery_token

        second = capture(cart_data=[{"name": "Belt", "price": "300", "quantity": 1}])

        assert second.id == first.id
        assert second.recovery_token == token
        assert second.total_value == Decimal("300.00")
        assert db.session.query(AbandonedCart).count() == 1

    def test_recovered_cart_does_not_block_new_capture(self):
        first = capture()
        abandoned_cart_service.mark_recovered(first.recovery_token)

        second = capture()

        assert second.id != first.id
        assert second.recovery_token != first.recovery_token

    def test_concurrent_insert_is_retried_as_update(self, monkeypatch):
        issue_token = abandoned_cart_service.generate_recovery_token
        raced = []

        def token_after_competing_capture():
            # Another worker commits a live record between our lookup and insert
            if not raced:
                raced.append(True)
                db.session.add(AbandonedCart(
                    email="shopper@example.com",
                    cart_data=[{"name": "Belt", "price": "300.00", "quantity": 1}],
                    total_value=Decimal("300.00"),
                    recovery_token="a" * 64,
                    expires_at=utcnow() + timedelta(days=7),
                    created_at=utcnow(),
                ))
                db.session.commit()
            return issue_token()

        monkeypatch.setattr(abandoned_cart_service, "generate_recovery_token", token_after_competing_capture)

        cart = capture()

        assert db.session.query(AbandonedCart).count() == 1
        assert cart.recovery_token == "a" * 64
        assert cart.total_value == Decimal("1200.00")

    def test_explicit_total_wins(self):
        assert capture(total_value="999.50").total_value == Decimal("999.50")

    @pytest.mark.parametrize("cart_data", [[], None, [{"price": "1", "quantity": 1}], [{"name": "x", "price": "1", "quantity": 0}]])
    def test_invalid_snapshot_rejected(self, cart_data):
        with pytest.raises(InvalidRequestError):
            abandoned_cart_service.capture("shopper@example.com", cart_data)

    def test_unknown_user_rejected(self):
        with pytest.raises(NotFoundError):
            capture(user_id=4242)

    def test_admin_capture_route(self, client, admin_headers, customer_headers):
        body = {"email": "shopper@example.com", "cart_data": CART_LINES}

        assert client.post("/api/admin/abandoned-carts", json=body, headers=customer_headers).status_code == 403
        response = client.post("/api/admin/abandoned-carts", json=body, headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()["success"] is True


class TestCaptureMine:
    def test_guest_is_not_captured(self, client):
        response = client.post("/api/abandoned-carts/capture-mine", json={"email": "guest@example.com"})

        assert response.status_code == 200
        assert response.get_json() == {"success": False, "message": "Guest carts not supported yet"}

    def test_empty_cart(self, client, customer_headers):
        response = client.post(
            "/api/abandoned-carts/capture-mine", json={"email": "asha@example.com"}, headers=customer_headers
        )
        assert response.get_json() == {"success": False, "message": "Cart is empty"}

    def test_prices_follow_variant_then_sale_price(self, client, customer, customer_headers, product, variant):
        cart = Cart(user_id=customer.id)
        cart.items.append(CartItem(product_id=product.id, variant_id=variant.id, quantity=1))
        cart.items.append(CartItem(product_id=product.id, variant_id=None, quantity=2))
        db.session.add(cart)
        db.session.commit()

        response = client.post(
            "/api/abandoned-carts/capture-mine", json={"email": "asha@example.com"}, headers=customer_headers
        )

        assert response.get_json()["success"] is True
        record = db.session.get(AbandonedCart, response.get_json()["id"])
        assert [line["price"] for line in record.cart_data] == ["650.00", "600.00"]
        assert record.cart_data[0]["size"] == "M"
        assert record.total_value == Decimal("1850.00")
        assert record.user_id == customer.id


# =============================================================================
# RECOVERY
# =============================================================================

class TestRecovery:
    def test_recover_is_repeatable(self, client):
        cart = capture()

        for _ in range(2):
            response = client.get(f"/api/abandoned-carts/recover/{cart.recovery_token}")
            assert response.status_code == 200
            assert response.get_json()["total_value"] == "1200.00"

    def test_unknown_token(self, client):
        response = client.get("/api/abandoned-carts/recover/nope")
        assert response.status_code == 404
        assert response.get_json()["error"] == "Invalid or expired recovery link"

    def test_expired_token(self):
        cart = capture()
        cart.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(InvalidRequestError, match="expired"):
            abandoned_cart_service.recover(cart.recovery_token)

    def test_recovered_token(self, client):
        cart = capture()
        response = client.post(f"/api/abandoned-carts/recover/{cart.recovery_token}/complete")
        assert response.status_code == 200

        with pytest.raises(InvalidRequestError, match="already been recovered"):
            abandoned_cart_service.recover(cart.recovery_token)
        second = client.post(f"/api/abandoned-carts/recover/{cart.recovery_token}/complete")
        assert second.status_code == 400

    def test_mark_unknown_token(self):
        with pytest.raises(NotFoundError):
            abandoned_cart_service.mark_recovered("missing")


# =============================================================================
# RECOVERY EMAIL BATCH
# =============================================================================

class TestProcessBatch:
    def test_only_old_unsent_live_carts_are_emailed(self, fake_mail):
        old = age(capture(email="old@example.com"), hours=3)
        age(capture(email="fresh@example.com"), hours=0)
        recovered = age(capture(email="back@example.com"), hours=3)
        abandoned_cart_service.mark_recovered(recovered.recovery_token)
        expired = age(capture(email="gone@example.com"), hours=3)
        expired.expires_at = utcnow() - timedelta(hours=1)
        db.session.commit()

        result = abandoned_cart_service.process_abandoned_carts(hours_threshold=1, limit=10)

        assert (result.processed, result.sent, result.errors) == (1, 1, [])
        assert [m["to"] for m in fake_mail.sent] == [["old@example.com"]]
        assert f"/cart/recover?token={old.recovery_token}" in fake_mail.sent[0]["text"]
        assert "Hi Valued Customer" in fake_mail.sent[0]["text"]
        assert db.session.get(AbandonedCart, old.id).recovery_email_sent is True

    def test_second_run_sends_nothing(self):
        age(capture(), hours=2)
        abandoned_cart_service.process_abandoned_carts(hours_threshold=1)

        result = abandoned_cart_service.process_abandoned_carts(hours_threshold=1)

        assert result.to_dict() == {"success": True, "processed": 0, "sent": 0}

    def test_limit_takes_oldest_first(self, fake_mail):
        for n, hours in enumerate([5, 9, 7]):
            age(capture(email=f"c{n}@example.com"), hours=hours)

        result = abandoned_cart_service.process_abandoned_carts(hours_threshold=1, limit=2)

        assert result.processed == 2
        assert [m["to"][0] for m in fake_mail.sent] == ["c1@example.com", "c2@example.com"]

    def test_failed_send_leaves_cart_eligible(self, fake_mail):
        cart = age(capture(), hours=2)
        fake_mail.fail = True

        result = abandoned_cart_service.process_abandoned_carts(hours_threshold=1)

        assert result.sent == 0
        assert result.errors == ["Failed to send to shopper@example.com"]
        assert result.to_dict()["errors"] == result.errors
        assert db.session.get(AbandonedCart, cart.id).recovery_email_sent is False

        fake_mail.fail = False
        assert abandoned_cart_service.process_abandoned_carts(hours_threshold=1).sent == 1

    def test_successful_sends_are_counted(self):
        age(capture(), hours=2)
        before = abandoned_cart_sent()

        abandoned_cart_service.process_abandoned_carts(hours_threshold=1)

        assert abandoned_cart_sent() == before + 1

    @pytest.mark.parametrize("kwargs", [
        {"hours_threshold": 0}, {"hours_threshold": 73}, {"limit": 0}, {"limit": 51}, {"limit": "many"},
    ])
    def test_bounds_validated(self, kwargs):
        with pytest.raises(InvalidRequestError):
            abandoned_cart_service.process_abandoned_carts(**kwargs)

    def test_admin_process_route(self, client, admin_headers):
        age(capture(), hours=2)

        response = client.post(
            "/api/admin/abandoned-carts/process", json={"hours_threshold": 1, "limit": 5}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "processed": 1, "sent": 1}

    def test_send_single_recovery_email(self, client, admin_headers, fake_mail):
        cart = capture()

        response = client.post(f"/api/admin/abandoned-carts/{cart.id}/send", headers=admin_headers)

        assert response.status_code == 200
        assert response.get_json()["cart"]["recovery_email_sent"] is True
        assert len(fake_mail.sent) == 1

    def test_send_single_failure_is_upstream_error(self, fake_mail):
        cart = capture()
        fake_mail.fail = True

        with pytest.raises(UpstreamError):
            abandoned_cart_service.send_recovery_email(cart.id)
        assert db.session.get(AbandonedCart, cart.id).recovery_email_sent is False

    def test_send_to_recovered_cart_rejected(self):
        cart = capture()
        abandoned_cart_service.mark_recovered(cart.recovery_token)
        with pytest.raises(InvalidRequestError):
            abandoned_cart_service.send_recovery_email(cart.id)


# =============================================================================
# CRON AND CLEANUP
# =============================================================================

class TestCron:
    def test_missing_secret_is_unauthorized(self, client):
        assert client.post("/api/cron/abandoned-carts").status_code == 401
        assert client.get("/api/cron/abandoned-carts?secret=wrong").status_code == 401

    def test_bearer_secret(self, client):
        age(capture(), hours=2)
        expired = capture(email="gone@example.com")
        expired.expires_at = utcnow() - timedelta(days=1)
        db.session.commit()

        response = client.post("/api/cron/abandoned-carts", headers=auth_headers("cron-test-secret"))

        assert response.status_code == 200
        body = response.get_json()
        assert body["processed"] == 1
        assert body["sent"] == 1
        assert body["deleted"] == 1
        assert body["timestamp"].endswith("Z")

    def test_query_secret(self, client):
        response = client.get("/api/cron/abandoned-carts?secret=cron-test-secret")
        assert response.status_code == 200

    def test_closed_when_secret_unset(self, app, client):
        app.config["CRON_SECRET"] = ""
        try:
            response = client.get("/api/cron/abandoned-carts?secret=")
        finally:
            app.config["CRON_SECRET"] = "cron-test-secret"
        assert response.status_code == 401

    def test_cleanup_only_deletes_expired(self, client, admin_headers):
        keep = capture(email="keep@example.com")
        drop = capture(email="drop@example.com")
        drop.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()

        response = client.post("/api/admin/abandoned-carts/cleanup", headers=admin_headers)

        assert response.get_json() == {"success": True, "deleted": 1}
        assert [c.id for c in db.session.query(AbandonedCart).all()] == [keep.id]


class TestAdminReads:
    def test_stats(self, client, admin_headers):
        capture(email="a@example.com", total_value="100")
        capture(email="b@example.com", total_value="300")
        recovered = capture(email="c@example.com", total_value="600")
        abandoned_cart_service.mark_recovered(recovered.recovery_token)

        stats = client.get("/api/admin/abandoned-carts/stats", headers=admin_headers).get_json()

        assert stats["total"] == 3
        assert stats["recovered"] == 1
        assert stats["recovery_rate"] == "33.3"
        assert stats["pending_emails"] == 2
        assert stats["total_value"] == "1000.00"
        assert stats["recovered_value"] == "600.00"

    def test_empty_stats(self):
        stats = abandoned_cart_service.stats()
        assert stats["recovery_rate"] == "0"
        assert stats["total_value"] == "0.00"

    def test_list_filters(self, client, admin_headers):
        capture(email="a@example.com")
        recovered = capture(email="b@example.com")
        abandoned_cart_service.mark_recovered(recovered.recovery_token)

        carts = client.get("/api/admin/abandoned-carts?recovered=true", headers=admin_headers).get_json()["carts"]
        assert [c["email"] for c in carts] == ["b@example.com"]
