"""
Health, metrics and CLI command tests.
"""

from datetime import timedelta

from storefront.extensions import db, mailer
from storefront.models import AbandonedCart, Setting, User
from storefront.services import abandoned_cart_service
from storefront.time_utils import utcnow


class TestHealth:
    def test_healthy_when_configured(self, client):
        resp = client.get("/api/system/health")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_degraded_without_mail_credentials(self, client):
        api_key = mailer.api_key
        mailer.api_key = ""
        try:
            resp = client.get("/api/system/health")
        finally:
            mailer.api_key = api_key

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "degraded"
        assert resp.get_json()["checks"]["integrations"]["details"]["mailer_configured"] is False

    def test_metrics_exposes_notification_counter(self, client):
        abandoned_cart_service.capture("m@example.com", [{"name": "Belt", "price": "300", "quantity": 1}])
        cart = AbandonedCart.query.one()
        abandoned_cart_service.send_recovery_email(cart.id)

        resp = client.get("/api/system/metrics")

        assert resp.status_code == 200
        assert 'storefront_notifications_total{event="abandoned_cart",outcome="sent"}' in resp.get_data(as_text=True)

    def test_cors_allows_store_origin(self, client):
        resp = client.get("/api/system/health", headers={"Origin": "http://shop.test"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://shop.test"

        other = client.get("/api/system/health", headers={"Origin": "http://evil.test"})
        assert "Access-Control-Allow-Origin" not in other.headers


class TestCli:
    def test_system_init_seeds_settings(self, app):
        result = app.test_cli_runner().invoke(args=["system", "init"])

        assert result.exit_code == 0
        assert "PASS Seeded 5 settings domain(s)" in result.output
        assert db.session.query(Setting).count() == 5

    def test_create_admin(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create-admin", "--email", "root@shop.test", "--password", "Password123", "--name", "Root",
        ])

        assert result.exit_code == 0
        assert User.query.filter_by(email="root@shop.test").one().role == "admin"

    def test_create_admin_weak_password(self, app):
        result = app.test_cli_runner().invoke(args=[
            "users", "create-admin", "--email", "root@shop.test", "--password", "weak",
        ])

        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_carts_process_and_cleanup(self, app, fake_mail):
        cart = abandoned_cart_service.capture("c@example.com", [{"name": "Belt", "price": "300", "quantity": 1}])
        cart.created_at = utcnow() - timedelta(hours=2)
        db.session.commit()

        runner = app.test_cli_runner()
        processed = runner.invoke(args=["carts", "process", "--hours", "1"])
        assert "Processed 1, sent 1, errors 0" in processed.output

        cart = AbandonedCart.query.one()
        cart.expires_at = utcnow() - timedelta(days=1)
        db.session.commit()
        cleaned = runner.invoke(args=["carts", "cleanup-expired"])
        assert "Deleted 1 expired abandoned carts." in cleaned.output

    def test_carts_process_rejects_bad_bounds(self, app):
        result = app.test_cli_runner().invoke(args=["carts", "process", "--limit", "500"])
        assert result.exit_code == 1

    def test_inventory_alerts_need_store_email(self, app):
        result = app.test_cli_runner().invoke(args=["inventory", "process-alerts"])
        assert result.exit_code == 1
        assert "Store email is not configured" in result.output
