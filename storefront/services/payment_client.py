# storefront/services/payment_client.py
import json
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

import stripe

from storefront.domain.errors import PaymentError
from storefront.utils.logging import get_logger
from storefront.utils.retry import payment_retry
from storefront.utils.settings import STRIPE_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentHandle:
    reference: str
    client_secret: str


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentClient:
    """Thin wrapper over the Stripe SDK: payment intents and webhook verification."""

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        currency: str | None = None,
    ):
        self.api_key = api_key if api_key is not None else STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else STRIPE_WEBHOOK_SECRET
        self.currency = currency or STRIPE_CURRENCY

    def _require_key(self) -> None:
        if not self.api_key:
            raise PaymentError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
        stripe.api_key = self.api_key

    @payment_retry()
    def create_payment_intent(self, order_id: int, order_number: str, amount: Decimal, email: str) -> PaymentHandle:
        self._require_key()
        logger.info(f"Creating payment intent for order {order_id} ({amount} {self.currency})")

        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                automatic_payment_methods={"enabled": True},
                metadata={"order_id": str(order_id), "order_number": order_number},
                receipt_email=email,
                description=f"Order {order_number}",
                idempotency_key=f"order-{order_number}",
            )
        except stripe.APIConnectionError:
            raise
        except stripe.StripeError as e:
            raise PaymentError(f"Payment provider rejected the request: {e.user_message or e}")

        return PaymentHandle(reference=intent.id, client_secret=intent.client_secret)

    @payment_retry()
    def cancel_payment_intent(self, reference: str) -> None:
        self._require_key()
        logger.info(f"Cancelling payment intent {reference}")
        try:
            stripe.PaymentIntent.cancel(reference)
        except stripe.APIConnectionError:
            raise
        except stripe.StripeError as e:
            raise PaymentError(f"Could not cancel payment {reference}: {e.user_message or e}")

    @payment_retry()
    def get_payment_status(self, reference: str) -> str:
        """Aktualny status PaymentIntent po stronie Stripe (np. ``succeeded``, ``canceled``)."""
        self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(reference)
        except stripe.APIConnectionError:
            raise
        except stripe.StripeError as e:
            raise PaymentError(f"Could not fetch payment {reference}: {e.user_message or e}")
        return intent.status

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict:
        if not self.webhook_secret:
            raise PaymentError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise PaymentError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.webhook_secret,
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise PaymentError(f"Webhook signature verification failed: {e}")

        # podpis sprawdzony, dalej pracujemy na zwyklym dict
        data = json.loads(payload)
        return {
            "id": event.id,
            "type": event.type,
            "object": data["data"]["object"],
        }
