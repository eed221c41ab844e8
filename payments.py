"""
Stripe Checkout integration.

Only session creation lives here. Recording a payment is a separate call
(`POST /save-payment`) made by the client after the success redirect.
"""
import logging
from functools import lru_cache
from typing import Optional

import stripe

from config import get_settings

logger = logging.getLogger(__name__)


class CheckoutSession:
    def __init__(self, session_id: str, url: str):
        self.id = session_id
        self.url = url


class StripeGateway:
    def __init__(self, secret_key: Optional[str], client_url: str, currency: str = "usd"):
        self.secret_key = secret_key
        self.client_url = client_url.rstrip("/")
        self.currency = currency

    def create_checkout_session(self, contest: dict, uid: str, email: Optional[str]) -> CheckoutSession:
        if not self.secret_key:
            raise stripe.AuthenticationError("Stripe secret key is not configured")

        contest_id = str(contest["_id"])
        session = stripe.checkout.Session.create(
            api_key=self.secret_key,
            mode="payment",
            payment_method_types=["card"],
            customer_email=email,
            line_items=[
                {
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": int(round(float(contest.get("price", 0)) * 100)),
                        "product_data": {"name": contest.get("name", "Contest entry")},
                    },
                    "quantity": 1,
                }
            ],
            metadata={"contestId": contest_id, "uid": uid},
            success_url=f"{self.client_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}&contestId={contest_id}",
            cancel_url=f"{self.client_url}/contest/{contest_id}",
        )
        logger.info("checkout session created", extra={"contest_id": contest_id, "uid": uid, "session_id": session.id})
        return CheckoutSession(session.id, session.url)


@lru_cache(maxsize=1)
def get_payment_gateway() -> StripeGateway:
    settings = get_settings()
    return StripeGateway(settings.stripe_secret_key, settings.client_url, settings.checkout_currency)
