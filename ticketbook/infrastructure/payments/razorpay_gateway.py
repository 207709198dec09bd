# ticketbook/infrastructure/payments/razorpay_gateway.py

from dataclasses import dataclass
import logging
import os

import razorpay
from razorpay.errors import SignatureVerificationError

from ticketbook.domain.exceptions import PaymentVerificationError
from ticketbook.infrastructure.db.models import Order


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentHandle:
    provider_order_id: str
    amount: int
    currency: str
    key_id: str


class RazorpayGateway:
    """
    Thin wrapper over the Razorpay SDK. This service only asks for a
    payment handle and verifies the signed callback; capture and
    refunds belong to the payment provider.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        client: razorpay.Client | None = None,
    ):
        self.key_id = key_id
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    @classmethod
    def from_env(cls) -> "RazorpayGateway":
        key_id = os.getenv("RAZORPAY_KEY_ID")
        key_secret = os.getenv("RAZORPAY_KEY_SECRET")
        if not key_id or not key_secret:
            raise RuntimeError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return cls(key_id=key_id, key_secret=key_secret)

    def create_payment_handle(self, order: Order) -> PaymentHandle:
        # Razorpay amounts are in the smallest currency unit, like ours.
        provider_order = self.client.order.create(
            {
                "amount": order.total_amount,
                "currency": order.currency,
                "receipt": order.id,
            }
        )
        logger.info(
            "Created payment handle order_id=%s provider_order_id=%s",
            order.id,
            provider_order.get("id"),
        )
        return PaymentHandle(
            provider_order_id=provider_order["id"],
            amount=order.total_amount,
            currency=order.currency,
            key_id=self.key_id,
        )

    def verify_payment(
        self,
        provider_order_id: str,
        payment_id: str,
        signature: str,
    ) -> None:
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": provider_order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except SignatureVerificationError as exc:
            raise PaymentVerificationError("Invalid payment signature") from exc
