"""
Payment gateway and money helper tests.

Verifies:
- Callback signatures verify only for the exact (order, payment, secret)
- Amounts are sent to the gateway in integer minor units
- HTTP failures surface as PaymentGatewayError
"""

import json
from decimal import Decimal

import httpx
import pytest

from storefront.extensions import gateway
from storefront.money import money_str, to_decimal, to_minor_units
from storefront.services.payment_gateway import PaymentGatewayError, compute_signature
from conftest import sign


class TestSignature:
    def test_valid_signature(self):
        assert gateway.verify_signature("order_1", "pay_1", sign("order_1", "pay_1"))

    @pytest.mark.parametrize("order_id,payment_id", [("order_2", "pay_1"), ("order_1", "pay_2")])
    def test_signature_bound_to_both_ids(self, order_id, payment_id):
        assert not gateway.verify_signature(order_id, payment_id, sign("order_1", "pay_1"))

    def test_single_character_change_fails(self):
        signature = sign("order_1", "pay_1")
        flipped = ("0" if signature[0] != "0" else "1") + signature[1:]
        assert not gateway.verify_signature("order_1", "pay_1", flipped)

    def test_other_secret_fails(self):
        assert not gateway.verify_signature("order_1", "pay_1", compute_signature("other", "order_1", "pay_1"))

    @pytest.mark.parametrize("args", [("", "pay_1", "sig"), ("order_1", "", "sig"), ("order_1", "pay_1", "")])
    def test_blank_inputs_never_verify(self, args):
        assert gateway.verify_signature(*args) is False

    def test_signature_is_hex_sha256(self):
        signature = compute_signature("secret", "order_1", "pay_1")
        assert len(signature) == 64
        int(signature, 16)


class TestGatewayCalls:
    def test_create_order_sends_minor_units(self, fake_gateway):
        order = gateway.create_order(Decimal("499.99"), "INR", receipt="ORD-1", notes={"n": 1})

        body = json.loads(fake_gateway.requests[0].content)
        assert body == {"amount": 49999, "currency": "INR", "receipt": "ORD-1", "notes": {"n": "1"}}
        assert order.amount == 49999
        assert fake_gateway.requests[0].headers["Authorization"].startswith("Basic ")

    def test_http_error_maps_to_gateway_error(self, fake_gateway):
        fake_gateway.fail_orders = True
        with pytest.raises(PaymentGatewayError):
            gateway.create_order(Decimal("10"), "INR")

    def test_unreachable_maps_to_gateway_error(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        gateway.use_transport(httpx.MockTransport(refuse))
        with pytest.raises(PaymentGatewayError, match="unreachable"):
            gateway.fetch_payment("pay_1")

    def test_unknown_payment(self):
        with pytest.raises(PaymentGatewayError):
            gateway.fetch_payment("pay_missing")


class TestMoney:
    @pytest.mark.parametrize(
        "value,expected",
        [("1200", 120000), (Decimal("0.01"), 1), (0.1, 10), ("19.995", 2000), (7, 700)],
    )
    def test_minor_units(self, value, expected):
        assert to_minor_units(to_decimal(value)) == expected

    @pytest.mark.parametrize("value", [None, True, "abc", ""])
    def test_garbage_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_money_str(self):
        assert money_str(Decimal("5")) == "5.00"
        assert money_str(None) is None
