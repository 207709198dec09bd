import pytest
from razorpay.errors import SignatureVerificationError

from ticketbook.domain.exceptions import PaymentVerificationError
from ticketbook.infrastructure.db.models import Order
from ticketbook.infrastructure.payments.razorpay_gateway import RazorpayGateway


class _OrderApi:
    def __init__(self):
        self.requests = []

    def create(self, data):
        self.requests.append(data)
        return {"id": "order_rzp_42", "amount": data["amount"], "currency": data["currency"]}


class _Utility:
    def verify_payment_signature(self, params):
        if params["razorpay_signature"] != "good-signature":
            raise SignatureVerificationError("Razorpay Signature Verification Failed")
        return True


class _Client:
    def __init__(self):
        self.order = _OrderApi()
        self.utility = _Utility()


@pytest.fixture
def sdk_client():
    return _Client()


def test_create_payment_handle_uses_minor_units(sdk_client):
    gateway = RazorpayGateway("rzp_test_key", "secret", client=sdk_client)
    order = Order(id="order-1", total_amount=7500, currency="INR")

    handle = gateway.create_payment_handle(order)

    assert handle.provider_order_id == "order_rzp_42"
    assert handle.amount == 7500
    assert handle.key_id == "rzp_test_key"
    assert sdk_client.order.requests == [{"amount": 7500, "currency": "INR", "receipt": "order-1"}]


def test_bad_signature_becomes_domain_error(sdk_client):
    gateway = RazorpayGateway("rzp_test_key", "secret", client=sdk_client)

    gateway.verify_payment("order_rzp_42", "pay_1", "good-signature")
    with pytest.raises(PaymentVerificationError):
        gateway.verify_payment("order_rzp_42", "pay_1", "forged")


def test_from_env_requires_keys(monkeypatch):
    monkeypatch.delenv("RAZORPAY_KEY_ID", raising=False)
    monkeypatch.delenv("RAZORPAY_KEY_SECRET", raising=False)

    with pytest.raises(RuntimeError):
        RazorpayGateway.from_env()
