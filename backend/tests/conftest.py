"""
Pytest fixtures for storefront backend tests.

Provides the app and test client, a per-test table wipe, fake Razorpay and
Resend endpoints (httpx.MockTransport) and customer/admin accounts.
"""

import json
from decimal import Decimal

import httpx
import pytest

from storefront import create_app
from storefront.config import TestConfig
from storefront.extensions import db, gateway, mailer
from storefront.models import Product, ProductVariant
from storefront.services import settings_service
from storefront.services.auth_service import create_user
from storefront.services.payment_gateway import compute_signature
from storefront.services.session_service import create_session


CUSTOMER_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        settings_service.invalidate_cache()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        settings_service.invalidate_cache()


# =============================================================================
# OUTBOUND HTTP FAKES
# =============================================================================

class FakeRazorpay:
    """In-memory stand-in for the Razorpay orders and payments endpoints."""

    def __init__(self):
        self.orders = {}
        self.payments = {}
        self.requests = []
        self.fail_orders = False
        self.fail_payments = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/orders"):
            if self.fail_orders:
                return httpx.Response(500, json={"error": {"description": "gateway down"}})
            body = json.loads(request.content)
            order_id = f"order_{len(self.orders) + 1:04d}"
            self.orders[order_id] = body
            return httpx.Response(200, json={
                "id": order_id,
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body.get("receipt"),
                "status": "created",
            })

        if request.method == "GET" and "/payments/" in path:
            if self.fail_payments:
                return httpx.Response(503, json={"error": {"description": "unavailable"}})
            payment = self.payments.get(path.rsplit("/", 1)[1])
            if payment is None:
                return httpx.Response(404, json={"error": {"description": "not found"}})
            return httpx.Response(200, json=payment)

        return httpx.Response(404, json={"error": {"description": "unknown endpoint"}})

    def capture(self, payment_id, order_id, *, amount=None, currency="INR", status="captured", method="upi"):
        """Register a payment the gateway will report for `payment_id`."""
        if amount is None:
            amount = self.orders[order_id]["amount"]
        self.payments[payment_id] = {
            "id": payment_id,
            "entity": "payment",
            "order_id": order_id,
            "amount": amount,
            "currency": currency,
            "status": status,
            "method": method,
        }


class FakeResend:
    """Records every email POSTed to /emails."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if self.fail:
            return httpx.Response(500, json={"message": "provider error"})
        self.sent.append(body)
        return httpx.Response(200, json={"id": f"email_{len(self.sent)}"})

    def to(self, address):
        return [m for m in self.sent if address in m["to"]]

    def subjects(self):
        return [m["subject"] for m in self.sent]


@pytest.fixture(autouse=True)
def fake_gateway():
    fake = FakeRazorpay()
    gateway.use_transport(httpx.MockTransport(fake.handler))
    yield fake
    gateway.use_transport(None)


@pytest.fixture(autouse=True)
def fake_mail():
    fake = FakeResend()
    mailer.use_transport(httpx.MockTransport(fake.handler))
    yield fake
    mailer.use_transport(None)


def sign(order_id: str, payment_id: str, secret: str = TestConfig.RAZORPAY_KEY_SECRET) -> str:
    return compute_signature(secret, order_id, payment_id)


# =============================================================================
# ACCOUNTS
# =============================================================================

@pytest.fixture
def customer(db_session):
    return create_user(email="asha@example.com", password=CUSTOMER_PASSWORD, name="Asha Rao")


@pytest.fixture
def other_customer(db_session):
    return create_user(email="vikram@example.com", password=CUSTOMER_PASSWORD, name="Vikram")


@pytest.fixture
def admin(db_session):
    return create_user(email="admin@example.com", password=CUSTOMER_PASSWORD, name="Admin", role="admin")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def customer_headers(customer):
    _, token = create_session(customer.id)
    return auth_headers(token)


@pytest.fixture
def other_customer_headers(other_customer):
    _, token = create_session(other_customer.id)
    return auth_headers(token)


@pytest.fixture
def admin_headers(admin):
    _, token = create_session(admin.id)
    return auth_headers(token)


# =============================================================================
# CATALOG AND CHECKOUT
# =============================================================================

@pytest.fixture
def product(db_session):
    product = Product(name="Linen Shirt", sku="SHIRT-1", base_price=Decimal("700.00"),
                      sale_price=Decimal("600.00"), stock=20)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def variant(db_session, product):
    variant = ProductVariant(product_id=product.id, name="Linen Shirt M / Blue", sku="SHIRT-1-M-BLU",
                             size="M", color="Blue", price=Decimal("650.00"), stock=10)
    db_session.add(variant)
    db_session.commit()
    return variant


SHIPPING_ADDRESS = {
    "full_name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "country": "India",
}


def checkout_payload(product=None, variant=None, **overrides) -> dict:
    """Checkout body for two units at 600.00 (1200.00 total, free shipping)."""
    item = {
        "product_id": product.id if product is not None else None,
        "variant_id": variant.id if variant is not None else None,
        "name": "Linen Shirt",
        "sku": "SHIRT-1",
        "price": "600.00",
        "quantity": 2,
    }
    payload = {
        "items": [item],
        "shipping_address": dict(SHIPPING_ADDRESS),
        "subtotal": "1200.00",
        "shipping_cost": "0",
        "total": "1200.00",
    }
    payload.update(overrides)
    return payload
